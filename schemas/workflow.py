"""Pydantic records for jobs, workflow steps, assignments and audit entries."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.status import ACTIVE_STEP_STATUSES, StepStatus
from schemas.common import RowRecord, validate_non_empty_str


class WorkflowStepDefinition(BaseModel):
    """Immutable template entry of a product type's step sequence."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sequence_number: int = Field(ge=1)
    step_name: str
    department: str
    is_compulsory: bool = True

    @field_validator("step_name", "department")
    @classmethod
    def validate_names(cls, value: str, info) -> str:
        return validate_non_empty_str(value, info.field_name)


class Job(RowRecord):
    """A production order as stored in the ``jobs`` table."""

    id: int
    job_number: Optional[str] = None
    product_id: Optional[int] = None
    product_type: Optional[str] = None
    quantity: Optional[int] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    current_department: Optional[str] = None
    current_step: Optional[str] = None
    status: str = "PENDING"
    workflow_status: Optional[str] = None
    status_message: Optional[str] = None
    last_updated_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class JobWorkflowStep(RowRecord):
    """One materialized step of a job's workflow."""

    id: int
    job_id: int
    sequence_number: int
    step_name: str
    department: str
    is_compulsory: bool = True
    is_selected: bool = False
    status: StepStatus = StepStatus.INACTIVE
    status_message: Optional[str] = None
    assigned_to: Optional[str] = None
    activated_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0

    @property
    def is_eligible(self) -> bool:
        """Compulsory steps and selected optional steps take part in progression."""
        return self.is_compulsory or self.is_selected

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STEP_STATUSES


class DepartmentAssignment(RowRecord):
    """Binding of a job to an operator or machine within one department."""

    id: int
    job_id: int
    department: str
    assigned_to: Optional[str] = None
    resource: Optional[str] = None
    assigned_by: Optional[str] = None
    status: str
    comments: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AuditEntry(RowRecord):
    """One transition recorded in the lifecycle history."""

    job_id: int
    department: Optional[str] = None
    step_name: Optional[str] = None
    from_status: Optional[str] = None
    status: str
    actor: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[str] = None
