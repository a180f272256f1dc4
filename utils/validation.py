"""
Input validation utilities for the department workflow tools.

Validates job identifiers, department names and department-local status
values before they reach the progression engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type

from models.errors import create_validation_error
from models.status import Department, StepStatus

# Aliases accepted for department names in addition to the canonical value
DEPARTMENT_ALIASES = {
    "pre-press": Department.PREPRESS,
    "pre_press": Department.PREPRESS,
    "offset": Department.OFFSET_PRINTING,
    "digital": Department.DIGITAL_PRINTING,
    "quality": Department.QA,
    "dispatch": Department.LOGISTICS,
}


def validate_job_id(job_id) -> int:
    """
    Validate a job identifier.

    Args:
        job_id: The job ID to validate

    Returns:
        The validated job ID

    Raises:
        ToolError: If job_id is not a positive integer
    """
    # bool is a subclass of int in Python, reject explicitly
    if isinstance(job_id, bool) or not isinstance(job_id, int):
        raise create_validation_error(
            f"Invalid job ID type: expected integer, got {type(job_id).__name__}"
        )
    if job_id <= 0:
        raise create_validation_error(f"Invalid job ID: {job_id} must be a positive integer")
    return job_id


def normalize_department(value) -> Department:
    """
    Resolve a department name case-insensitively.

    ``offset_printing``, ``Offset-Printing`` and ``OFFSET PRINTING`` all
    resolve to ``Department.OFFSET_PRINTING``.

    Raises:
        ToolError: If the value names no known department
    """
    if isinstance(value, Department):
        return value
    if not isinstance(value, str) or not value.strip():
        raise create_validation_error("Invalid department: cannot be empty")

    key = value.strip().lower()
    if key in DEPARTMENT_ALIASES:
        return DEPARTMENT_ALIASES[key]

    spaced = key.replace("_", " ").replace("-", " ")
    for department in Department:
        if department.value.lower() == spaced:
            return department

    allowed = ", ".join(d.value for d in Department)
    raise create_validation_error(f"Invalid department: '{value}'. Allowed values: {allowed}")


def coerce_status(value, vocabulary: Type[Enum]) -> Enum:
    """
    Resolve a status string against a closed vocabulary.

    Matches the member value exactly, then the value or member name
    case-insensitively with ``_``/space treated alike, so ``in_progress``
    resolves to cutting's ``"In Progress"``.

    Raises:
        ToolError: If the value is not part of the vocabulary
    """
    if isinstance(value, vocabulary):
        return value
    if not isinstance(value, str) or not value.strip():
        raise create_validation_error("Invalid status: cannot be empty")

    try:
        return vocabulary(value)
    except ValueError:
        pass

    wanted = value.strip().lower().replace("_", " ")
    for member in vocabulary:
        if member.value.lower().replace("_", " ") == wanted:
            return member
        if member.name.lower().replace("_", " ") == wanted:
            return member

    allowed = ", ".join(member.value for member in vocabulary)
    raise create_validation_error(f"Invalid status: '{value}'. Allowed values: {allowed}")


def coerce_step_status(value) -> StepStatus:
    """Resolve a generic workflow step status."""
    return coerce_status(value, StepStatus)


def validate_note(note: Optional[str], field_name: str = "note") -> Optional[str]:
    """Normalize an optional free-text note; blank means absent."""
    if note is None:
        return None
    if not isinstance(note, str):
        raise create_validation_error(
            f"Invalid {field_name} type: expected string, got {type(note).__name__}"
        )
    stripped = note.strip()
    return stripped or None


def get_current_utc_timestamp() -> str:
    """
    Generate a UTC timestamp in ISO 8601 format with millisecond precision.

    Example: 2026-02-04T03:47:36.966Z

    Returns:
        ISO 8601 UTC timestamp string with millisecond precision and Z suffix
    """
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
