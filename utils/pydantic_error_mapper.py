"""
Convert request-schema ValidationErrors into workflow tool errors.

Messages follow the ``Invalid <field>: <reason>`` form of
``utils.validation``, with the reason phrased for job ids, queue limits
and free-text fields rather than in pydantic's wording.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from models.errors import ToolError, create_validation_error

INTEGER_ERROR_TYPES = {"int_type", "int_parsing", "int_from_float"}


def _loc_to_field(loc: tuple[Any, ...]) -> str:
    # List positions are dropped: "selected_steps.2" reports as "selected_steps"
    parts = [str(part) for part in loc if part != "__root__" and not isinstance(part, int)]
    return ".".join(parts)


def _clean_pydantic_message(message: str) -> str:
    if message.startswith("Value error, "):
        return message[len("Value error, ") :]
    return message


def _is_identifier(field: str) -> bool:
    return field.rsplit(".", 1)[-1].endswith("_id")


def _describe(issue: dict[str, Any], field: str) -> str:
    """Reason text for one pydantic issue, phrased for workflow inputs."""
    error_type = issue.get("type", "")
    ctx = issue.get("ctx") or {}

    if error_type == "missing":
        return "Field required"
    if error_type in INTEGER_ERROR_TYPES or (
        error_type == "greater_than_equal" and _is_identifier(field)
    ):
        if _is_identifier(field):
            return "must be a positive integer"
        return f"expected integer, got {type(issue.get('input')).__name__}"
    if error_type == "string_type":
        return f"expected string, got {type(issue.get('input')).__name__}"
    if error_type == "greater_than_equal":
        return f"must be at least {ctx.get('ge')}"
    if error_type == "less_than_equal":
        return f"must be at most {ctx.get('le')}"
    return _clean_pydantic_message(issue.get("msg", "Invalid input"))


def map_pydantic_validation_error(error: ValidationError) -> ToolError:
    """Map the first issue of a ValidationError to a VALIDATION_ERROR ToolError."""
    issues = error.errors()
    if not issues:
        return create_validation_error("Invalid input")

    first = issues[0]
    field = _loc_to_field(first.get("loc", ()))
    message = _describe(first, field)

    # Field validators already prefix their own "Invalid <field>:" text
    if message.startswith("Invalid "):
        return create_validation_error(message)
    if field:
        return create_validation_error(f"Invalid {field}: {message}")
    return create_validation_error(message)
