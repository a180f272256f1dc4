"""
Process-wide workflow services for the tool handlers.

The catalog is loaded once per catalog path and the notification fanout is
created on first use from configuration.
"""

import logging
import threading
from functools import lru_cache
from typing import Optional

from config import get_config
from workflow.catalog import WorkflowDefinitionCatalog
from workflow.departments import build_engine
from workflow.instance import JobWorkflowInstance
from workflow.notifications import NotificationFanout
from workflow.progression import DepartmentProgressionEngine

logger = logging.getLogger(__name__)

_fanout: Optional[NotificationFanout] = None
_fanout_lock = threading.Lock()


@lru_cache(maxsize=8)
def _load_catalog(path: str) -> WorkflowDefinitionCatalog:
    catalog = WorkflowDefinitionCatalog.from_yaml(path)
    logger.info("Loaded workflow catalog %s (%s)", path, ", ".join(catalog.product_types()))
    return catalog


def get_catalog() -> WorkflowDefinitionCatalog:
    """Catalog configured by JOBCARD_CATALOG_PATH."""
    return _load_catalog(str(get_config().catalog_path))


def get_fanout() -> NotificationFanout:
    """Shared notification fanout, created on first use."""
    global _fanout
    with _fanout_lock:
        if _fanout is None:
            config = get_config()
            _fanout = NotificationFanout(
                async_delivery=config.notify_async, max_workers=config.notify_workers
            )
        return _fanout


def get_instance(db_path: Optional[str] = None) -> JobWorkflowInstance:
    return JobWorkflowInstance(
        get_catalog(),
        db_path=db_path,
        fanout=get_fanout(),
        default_product_type=get_config().default_product_type,
    )


def get_engine(department: str, db_path: Optional[str] = None) -> DepartmentProgressionEngine:
    """
    Progression engine for a department name.

    Raises:
        ToolError: VALIDATION_ERROR for an unknown department
    """
    return build_engine(
        department,
        get_catalog(),
        db_path=db_path,
        fanout=get_fanout(),
        default_product_type=get_config().default_product_type,
    )


def reset_services() -> None:
    """Drop the cached catalog and stop the shared fanout."""
    global _fanout
    _load_catalog.cache_clear()
    with _fanout_lock:
        fanout, _fanout = _fanout, None
    if fanout is not None:
        fanout.shutdown()
