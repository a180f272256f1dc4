"""Pydantic schemas for generate_job_workflow, get_job_workflow and sync_job_status tools."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from schemas.common import (
    DbPathMixin,
    StrictIgnoreRequest,
    StrictResponse,
    validate_optional_non_empty_str,
)


class JobRequest(DbPathMixin, StrictIgnoreRequest):
    """Request base addressing one job."""

    job_id: int = Field(ge=1)


class OptionalActorRequest(JobRequest):
    """Request base for job actions with an optional actor."""

    actor: Optional[str] = None

    @field_validator("actor")
    @classmethod
    def validate_actor(cls, value: Optional[str]) -> Optional[str]:
        return validate_optional_non_empty_str(value, "actor")


class GenerateJobWorkflowRequest(OptionalActorRequest):
    """Request schema for generate_job_workflow."""

    product_id: Optional[int] = Field(default=None, ge=1)


class GetJobWorkflowRequest(JobRequest):
    """Request schema for get_job_workflow."""


class SyncJobStatusRequest(OptionalActorRequest):
    """Request schema for sync_job_status."""


class WorkflowStepItem(StrictResponse):
    """One step of a job's workflow."""

    sequence_number: int
    step_name: str
    department: str
    is_compulsory: bool
    is_selected: bool
    status: str
    status_message: Optional[str] = None
    assigned_to: Optional[str] = None
    activated_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_by: Optional[str] = None
    version: int


class JobWorkflowResponse(StrictResponse):
    """Response schema for generate_job_workflow and get_job_workflow."""

    job_id: int
    job_number: Optional[str] = None
    product_type: Optional[str] = None
    status: str
    current_department: Optional[str] = None
    current_step: Optional[str] = None
    workflow_status: Optional[str] = None
    status_message: Optional[str] = None
    steps: list[WorkflowStepItem]


class SyncJobStatusResponse(StrictResponse):
    """Response schema for sync_job_status."""

    job_id: int
    previous_status: str
    status: str
    changed: bool
    current_department: Optional[str] = None
    current_step: Optional[str] = None
    status_message: Optional[str] = None
