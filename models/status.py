"""
Centralized, type-safe status vocabularies for the job card workflow.

This module is the single source of truth for every status value the engine
reads or writes:

- ``JobStatus``: the five canonical values stored on ``jobs.status``.
- ``StepStatus``: lifecycle of a single ``job_workflow_steps`` row.
- ``Department``: organizational units that own steps.
- One closed Enum per department that reports in its own vocabulary
  (``PrepressStatus``, ``CuttingStatus``, ...).

All Enums inherit from ``(str, Enum)`` so members compare equal to plain
strings and serialize naturally to JSON and SQLite.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Canonical job status shown to every consumer of a job card."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    """Status of one step instance in a job's workflow.

    Lifecycle:
        inactive -> pending -> in_progress | submitted | qa_review
        -> completed | approved            (advances the workflow)
        -> rejected | revision_required    (rework loop)
    """

    INACTIVE = "inactive"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    QA_REVIEW = "qa_review"
    APPROVED = "approved"
    REVISION_REQUIRED = "revision_required"
    COMPLETED = "completed"
    REJECTED = "rejected"


# A step in one of these states is the job's current step
ACTIVE_STEP_STATUSES = frozenset(
    {StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.SUBMITTED, StepStatus.QA_REVIEW}
)

COMPLETION_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.APPROVED})

REWORK_STEP_STATUSES = frozenset({StepStatus.REJECTED, StepStatus.REVISION_REQUIRED})


class Department(str, Enum):
    """Organizational units that own workflow steps."""

    PREPRESS = "Prepress"
    CUTTING = "Cutting"
    OFFSET_PRINTING = "Offset Printing"
    DIGITAL_PRINTING = "Digital Printing"
    PRODUCTION = "Production"
    FINISHING = "Finishing"
    QA = "QA"
    LOGISTICS = "Logistics"
    INVENTORY = "Inventory"
    EXTERNAL = "External"

    @property
    def slug(self) -> str:
        """Event-name prefix, e.g. ``offset_printing``."""
        return self.value.lower().replace(" ", "_")


class PrepressStatus(str, Enum):
    """Design and CTP statuses reported by prepress."""

    ASSIGNED = "ASSIGNED"
    DESIGN_IN_PROGRESS = "DESIGN_IN_PROGRESS"
    HOD_REVIEW = "HOD_REVIEW"
    SUBMITTED_FOR_QA = "SUBMITTED_FOR_QA"
    QA_REVIEW = "QA_REVIEW"
    APPROVED_BY_QA = "APPROVED_BY_QA"
    REJECTED_BY_QA = "REJECTED_BY_QA"
    CTP_IN_PROGRESS = "CTP_IN_PROGRESS"
    CTP_COMPLETED = "CTP_COMPLETED"


class CuttingStatus(str, Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class OffsetPrintingStatus(str, Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class DigitalPrintingStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class ProductionStatus(str, Enum):
    """Press-floor statuses reported by general production."""

    PENDING = "Pending"
    ASSIGNED = "Assigned"
    SETUP = "Setup"
    PRINTING = "Printing"
    QUALITY_CHECK = "Quality Check"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    REJECTED = "Rejected"


DEPARTMENT_VOCABULARIES = {
    Department.PREPRESS: PrepressStatus,
    Department.CUTTING: CuttingStatus,
    Department.OFFSET_PRINTING: OffsetPrintingStatus,
    Department.DIGITAL_PRINTING: DigitalPrintingStatus,
    Department.PRODUCTION: ProductionStatus,
}
