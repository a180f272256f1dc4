"""
Workflow definition catalog.

Holds the static, per-product-type ordered list of step definitions. The
catalog is read-only at runtime and never guesses a sequence for an unknown
product type: callers decide whether to fall back to a default or refuse.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from models.errors import NotFoundError, ToolError, create_validation_error
from schemas.workflow import WorkflowStepDefinition
from utils.step_departments import department_for_step
from utils.validation import normalize_department

logger = logging.getLogger(__name__)


def _parse_step(product_type: str, index: int, entry: Any) -> WorkflowStepDefinition:
    if isinstance(entry, str):
        entry = {"name": entry}
    if not isinstance(entry, Mapping):
        raise create_validation_error(
            f"Invalid catalog entry {index} for product type '{product_type}': "
            f"expected mapping, got {type(entry).__name__}"
        )

    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise create_validation_error(
            f"Invalid catalog entry {index} for product type '{product_type}': missing step name"
        )

    department = entry.get("department")
    if department is None:
        department = department_for_step(name).value
    else:
        try:
            department = normalize_department(department).value
        except ToolError as e:
            raise create_validation_error(
                f"Invalid catalog entry {index} for product type '{product_type}': {e.message}"
            ) from e

    try:
        return WorkflowStepDefinition(
            sequence_number=index,
            step_name=name,
            department=department,
            is_compulsory=entry.get("compulsory", True),
        )
    except ValidationError as e:
        raise create_validation_error(
            f"Invalid catalog entry {index} for product type '{product_type}': "
            f"{e.errors()[0].get('msg', 'invalid value')}"
        ) from e


class WorkflowDefinitionCatalog:
    """
    Ordered step definitions keyed by product type.

    Usage:
        catalog = WorkflowDefinitionCatalog.from_yaml("data/catalog/sequences.yaml")
        steps = catalog.get_sequence("Offset")
    """

    def __init__(self, sequences: Mapping[str, List[Any]]):
        """
        Build the catalog from a mapping of product type to step entries.

        Entries are step names or mappings with ``name``, optional
        ``department`` and optional ``compulsory``. Sequence numbers are
        assigned 1..n in list order.

        Raises:
            ToolError: If any product type or entry is malformed
        """
        self._sequences: Dict[str, tuple] = {}
        for product_type, entries in sequences.items():
            if not isinstance(product_type, str) or not product_type.strip():
                raise create_validation_error("Invalid catalog: product type cannot be empty")
            if not isinstance(entries, list) or not entries:
                raise create_validation_error(
                    f"Invalid catalog: product type '{product_type}' has no steps"
                )
            self._sequences[product_type] = tuple(
                _parse_step(product_type, index, entry)
                for index, entry in enumerate(entries, start=1)
            )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WorkflowDefinitionCatalog":
        """
        Load the catalog from a YAML file with a top-level ``product_types`` mapping.

        Raises:
            NotFoundError: If the file does not exist
            ToolError: If the file is not a valid catalog
        """
        catalog_path = Path(path)
        if not catalog_path.is_file():
            raise NotFoundError(f"Workflow catalog not found: {catalog_path.name}")

        try:
            with catalog_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise create_validation_error(f"Invalid workflow catalog YAML: {e}") from e

        product_types = data.get("product_types") if isinstance(data, dict) else None
        if not isinstance(product_types, dict):
            raise create_validation_error(
                "Invalid workflow catalog: missing top-level 'product_types' mapping"
            )

        catalog = cls(product_types)
        logger.info(
            "Loaded workflow catalog with %d product types from %s",
            len(catalog.product_types()),
            catalog_path.name,
        )
        return catalog

    def product_types(self) -> List[str]:
        return list(self._sequences)

    def has_sequence(self, product_type: Optional[str]) -> bool:
        return self._lookup(product_type) is not None

    def get_sequence(self, product_type: Optional[str]) -> List[WorkflowStepDefinition]:
        """
        Return the ordered step definitions for a product type.

        Matches the product type exactly, then case-insensitively.

        Raises:
            NotFoundError: If the product type has no configured sequence
        """
        sequence = self._lookup(product_type)
        if sequence is None:
            raise NotFoundError(f"No workflow sequence configured for product type '{product_type}'")
        return list(sequence)

    def _lookup(self, product_type: Optional[str]) -> Optional[tuple]:
        if not product_type:
            return None
        if product_type in self._sequences:
            return self._sequences[product_type]
        wanted = product_type.strip().lower()
        for name, sequence in self._sequences.items():
            if name.lower() == wanted:
                return sequence
        return None
