"""Pydantic schemas for the department tools."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator

from schemas.common import (
    ActorMixin,
    DbPathMixin,
    StrictIgnoreRequest,
    StrictResponse,
    validate_non_empty_str,
    validate_optional_non_empty_str,
)


class DepartmentRequest(DbPathMixin, StrictIgnoreRequest):
    """Request base addressing one department."""

    department: str

    @field_validator("department")
    @classmethod
    def validate_department(cls, value: str) -> str:
        return validate_non_empty_str(value, "department")


class GetDepartmentJobsRequest(DepartmentRequest):
    """Request schema for get_department_jobs."""

    status: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[str] = None
    due_from: Optional[str] = None
    due_to: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=500)

    @field_validator("status", "assigned_to", "priority", "due_from", "due_to")
    @classmethod
    def validate_filters(cls, value: Optional[str], info) -> Optional[str]:
        return validate_optional_non_empty_str(value, info.field_name)

    def filters(self) -> dict[str, Any]:
        """Filters that were supplied, as engine keyword arguments."""
        return self.model_dump(
            include={"status", "assigned_to", "priority", "due_from", "due_to", "limit"},
            exclude_none=True,
        )


class DepartmentJobRequest(ActorMixin, DepartmentRequest):
    """Request base for actions on one job in one department."""

    job_id: int = Field(ge=1)


class UpdateDepartmentStatusRequest(DepartmentJobRequest):
    """Request schema for update_department_status."""

    status: str
    note: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return validate_non_empty_str(value, "status")


class AssignDepartmentJobRequest(DepartmentJobRequest):
    """Request schema for assign_department_job."""

    assignee: str
    resource: Optional[str] = None
    comments: Optional[str] = None

    @field_validator("assignee")
    @classmethod
    def validate_assignee(cls, value: str) -> str:
        return validate_non_empty_str(value, "assignee")


class AddDepartmentCommentRequest(DepartmentJobRequest):
    """Request schema for add_department_comment."""

    text: str

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        return validate_non_empty_str(value, "text")


class DepartmentJobItem(StrictResponse):
    """One job in a department's queue."""

    job_id: int
    job_number: Optional[str] = None
    product_type: Optional[str] = None
    quantity: Optional[int] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    job_status: str
    status_message: Optional[str] = None
    created_at: Optional[str] = None
    sequence_number: int
    step_name: str
    step_status: str
    activated_at: Optional[str] = None
    assigned_to: Optional[str] = None
    resource: Optional[str] = None
    assignment_status: Optional[str] = None
    comments: Optional[str] = None


class GetDepartmentJobsResponse(StrictResponse):
    """Response schema for get_department_jobs."""

    department: str
    count: int
    jobs: list[DepartmentJobItem]


class DepartmentStatusResponse(StrictResponse):
    """Response schema for update_department_status."""

    job_id: int
    department: str
    step_name: str
    sequence_number: int
    step_status: str
    department_status: Optional[str] = None
    job_status: str
    status_message: Optional[str] = None
    current_step: Optional[str] = None
    current_department: Optional[str] = None
    next_step: Optional[str] = None
    rolled_back_to: Optional[str] = None
    job_completed: bool


class AssignmentResponse(StrictResponse):
    """Response schema for assign_department_job and add_department_comment."""

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
