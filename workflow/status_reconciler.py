"""
Canonical job status reconciliation.

Translates step statuses and department-local statuses into the five-value
canonical ``JobStatus`` and owns the single write path for a job's canonical
status fields.

Mapping precedence in ``map_to_job_status``:
1. exact step status (``workflow_status``)
2. exact department status, scoped to the department's table when one exists
3. keyword heuristics for unregistered legacy strings (logged as degraded)
4. PENDING
"""

import logging
from enum import Enum
from typing import Dict, Mapping, Optional, Type

from db.audit_writer import AuditLog
from db.workflow_store import WorkflowStore, db_value
from models.status import (
    ACTIVE_STEP_STATUSES,
    DEPARTMENT_VOCABULARIES,
    CuttingStatus,
    Department,
    DigitalPrintingStatus,
    JobStatus,
    OffsetPrintingStatus,
    PrepressStatus,
    ProductionStatus,
    StepStatus,
)
from schemas.workflow import JobWorkflowStep
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

JOB_COMPLETED_MESSAGE = "Job Completed - Ready for Archive or Production Execution"

STEP_TO_JOB_STATUS: Dict[StepStatus, JobStatus] = {
    StepStatus.INACTIVE: JobStatus.PENDING,
    StepStatus.PENDING: JobStatus.PENDING,
    StepStatus.IN_PROGRESS: JobStatus.IN_PROGRESS,
    StepStatus.SUBMITTED: JobStatus.IN_PROGRESS,
    StepStatus.QA_REVIEW: JobStatus.IN_PROGRESS,
    # Completion and rework hand the job to another step, which starts pending
    StepStatus.APPROVED: JobStatus.PENDING,
    StepStatus.COMPLETED: JobStatus.PENDING,
    StepStatus.REVISION_REQUIRED: JobStatus.PENDING,
    StepStatus.REJECTED: JobStatus.PENDING,
}

DEPARTMENT_TO_JOB_STATUS: Dict[Department, Dict[Enum, JobStatus]] = {
    Department.PREPRESS: {
        PrepressStatus.ASSIGNED: JobStatus.PENDING,
        PrepressStatus.DESIGN_IN_PROGRESS: JobStatus.IN_PROGRESS,
        PrepressStatus.HOD_REVIEW: JobStatus.IN_PROGRESS,
        PrepressStatus.SUBMITTED_FOR_QA: JobStatus.IN_PROGRESS,
        PrepressStatus.QA_REVIEW: JobStatus.IN_PROGRESS,
        PrepressStatus.APPROVED_BY_QA: JobStatus.PENDING,
        PrepressStatus.REJECTED_BY_QA: JobStatus.PENDING,
        PrepressStatus.CTP_IN_PROGRESS: JobStatus.IN_PROGRESS,
        PrepressStatus.CTP_COMPLETED: JobStatus.PENDING,
    },
    Department.CUTTING: {
        CuttingStatus.PENDING: JobStatus.PENDING,
        CuttingStatus.ASSIGNED: JobStatus.PENDING,
        CuttingStatus.IN_PROGRESS: JobStatus.IN_PROGRESS,
        CuttingStatus.ON_HOLD: JobStatus.ON_HOLD,
        CuttingStatus.COMPLETED: JobStatus.PENDING,
        CuttingStatus.REJECTED: JobStatus.PENDING,
    },
    Department.OFFSET_PRINTING: {
        OffsetPrintingStatus.PENDING: JobStatus.PENDING,
        OffsetPrintingStatus.ASSIGNED: JobStatus.PENDING,
        OffsetPrintingStatus.IN_PROGRESS: JobStatus.IN_PROGRESS,
        OffsetPrintingStatus.ON_HOLD: JobStatus.ON_HOLD,
        OffsetPrintingStatus.COMPLETED: JobStatus.PENDING,
        OffsetPrintingStatus.REJECTED: JobStatus.PENDING,
    },
    Department.DIGITAL_PRINTING: {
        DigitalPrintingStatus.PENDING: JobStatus.PENDING,
        DigitalPrintingStatus.ASSIGNED: JobStatus.PENDING,
        DigitalPrintingStatus.IN_PROGRESS: JobStatus.IN_PROGRESS,
        DigitalPrintingStatus.ON_HOLD: JobStatus.ON_HOLD,
        DigitalPrintingStatus.COMPLETED: JobStatus.PENDING,
        DigitalPrintingStatus.REJECTED: JobStatus.PENDING,
    },
    Department.PRODUCTION: {
        ProductionStatus.PENDING: JobStatus.PENDING,
        ProductionStatus.ASSIGNED: JobStatus.PENDING,
        ProductionStatus.SETUP: JobStatus.IN_PROGRESS,
        ProductionStatus.PRINTING: JobStatus.IN_PROGRESS,
        ProductionStatus.QUALITY_CHECK: JobStatus.IN_PROGRESS,
        ProductionStatus.COMPLETED: JobStatus.PENDING,
        ProductionStatus.ON_HOLD: JobStatus.ON_HOLD,
        ProductionStatus.REJECTED: JobStatus.PENDING,
    },
}

DEPARTMENT_TO_STEP_STATUS: Dict[Department, Dict[Enum, StepStatus]] = {
    Department.PREPRESS: {
        PrepressStatus.ASSIGNED: StepStatus.PENDING,
        PrepressStatus.DESIGN_IN_PROGRESS: StepStatus.IN_PROGRESS,
        PrepressStatus.HOD_REVIEW: StepStatus.IN_PROGRESS,
        PrepressStatus.SUBMITTED_FOR_QA: StepStatus.SUBMITTED,
        PrepressStatus.QA_REVIEW: StepStatus.QA_REVIEW,
        PrepressStatus.APPROVED_BY_QA: StepStatus.APPROVED,
        PrepressStatus.REJECTED_BY_QA: StepStatus.REJECTED,
        PrepressStatus.CTP_IN_PROGRESS: StepStatus.IN_PROGRESS,
        PrepressStatus.CTP_COMPLETED: StepStatus.COMPLETED,
    },
    Department.CUTTING: {
        CuttingStatus.PENDING: StepStatus.PENDING,
        CuttingStatus.ASSIGNED: StepStatus.PENDING,
        CuttingStatus.IN_PROGRESS: StepStatus.IN_PROGRESS,
        CuttingStatus.ON_HOLD: StepStatus.IN_PROGRESS,
        CuttingStatus.COMPLETED: StepStatus.COMPLETED,
        CuttingStatus.REJECTED: StepStatus.REJECTED,
    },
    Department.OFFSET_PRINTING: {
        OffsetPrintingStatus.PENDING: StepStatus.PENDING,
        OffsetPrintingStatus.ASSIGNED: StepStatus.PENDING,
        OffsetPrintingStatus.IN_PROGRESS: StepStatus.IN_PROGRESS,
        OffsetPrintingStatus.ON_HOLD: StepStatus.IN_PROGRESS,
        OffsetPrintingStatus.COMPLETED: StepStatus.COMPLETED,
        OffsetPrintingStatus.REJECTED: StepStatus.REJECTED,
    },
    Department.DIGITAL_PRINTING: {
        DigitalPrintingStatus.PENDING: StepStatus.PENDING,
        DigitalPrintingStatus.ASSIGNED: StepStatus.PENDING,
        DigitalPrintingStatus.IN_PROGRESS: StepStatus.IN_PROGRESS,
        DigitalPrintingStatus.ON_HOLD: StepStatus.IN_PROGRESS,
        DigitalPrintingStatus.COMPLETED: StepStatus.COMPLETED,
        DigitalPrintingStatus.REJECTED: StepStatus.REJECTED,
    },
    Department.PRODUCTION: {
        ProductionStatus.PENDING: StepStatus.PENDING,
        ProductionStatus.ASSIGNED: StepStatus.PENDING,
        ProductionStatus.SETUP: StepStatus.IN_PROGRESS,
        ProductionStatus.PRINTING: StepStatus.IN_PROGRESS,
        ProductionStatus.QUALITY_CHECK: StepStatus.SUBMITTED,
        ProductionStatus.COMPLETED: StepStatus.COMPLETED,
        ProductionStatus.ON_HOLD: StepStatus.IN_PROGRESS,
        ProductionStatus.REJECTED: StepStatus.REJECTED,
    },
}

# Literals written by older department code; accepted, never produced
LEGACY_STATUS_TABLE: Dict[str, JobStatus] = {
    "PRODUCTION_PENDING": JobStatus.PENDING,
    "PRODUCTION_IN_PROGRESS": JobStatus.IN_PROGRESS,
    "PRODUCTION_ON_HOLD": JobStatus.ON_HOLD,
    "PRODUCTION_COMPLETED": JobStatus.PENDING,
    "CUTTING_IN_PROGRESS": JobStatus.IN_PROGRESS,
    "CUTTING_COMPLETED": JobStatus.PENDING,
}

STEP_STATUS_MESSAGES: Dict[StepStatus, str] = {
    StepStatus.INACTIVE: "Inactive",
    StepStatus.PENDING: "Pending",
    StepStatus.IN_PROGRESS: "In Progress",
    StepStatus.SUBMITTED: "Submitted for QA",
    StepStatus.QA_REVIEW: "Under QA Review",
    StepStatus.APPROVED: "Approved",
    StepStatus.REVISION_REQUIRED: "Revision Required",
    StepStatus.COMPLETED: "Completed",
    StepStatus.REJECTED: "Rejected",
}

# (keyword, canonical status) checked in order against the upper-cased input
KEYWORD_RULES = (
    ("PROGRESS", JobStatus.IN_PROGRESS),
    ("HOLD", JobStatus.ON_HOLD),
    ("COMPLETED", JobStatus.COMPLETED),
    ("CANCELLED", JobStatus.CANCELLED),
)


def _check_exhaustive(
    table: Mapping[Enum, Enum], vocabulary: Type[Enum], name: str
) -> None:
    missing = [member.value for member in vocabulary if member not in table]
    if missing:
        raise RuntimeError(f"{name} has no translation for: {', '.join(missing)}")


def _check_tables() -> None:
    _check_exhaustive(STEP_TO_JOB_STATUS, StepStatus, "STEP_TO_JOB_STATUS")
    _check_exhaustive(STEP_STATUS_MESSAGES, StepStatus, "STEP_STATUS_MESSAGES")
    for department, vocabulary in DEPARTMENT_VOCABULARIES.items():
        _check_exhaustive(
            DEPARTMENT_TO_JOB_STATUS.get(department, {}), vocabulary, f"{department.value} job table"
        )
        _check_exhaustive(
            DEPARTMENT_TO_STEP_STATUS.get(department, {}),
            vocabulary,
            f"{department.value} step table",
        )


_check_tables()

# Lookups keyed by plain strings; str Enums hash by name, not by value
_STEP_LOOKUP: Dict[str, JobStatus] = {s.value: j for s, j in STEP_TO_JOB_STATUS.items()}
_DEPARTMENT_LOOKUP: Dict[str, Dict[str, JobStatus]] = {
    department.value: {status.value: job for status, job in table.items()}
    for department, table in DEPARTMENT_TO_JOB_STATUS.items()
}
def _build_registered_lookup() -> Dict[str, JobStatus]:
    lookup: Dict[str, JobStatus] = {}
    for table in _DEPARTMENT_LOOKUP.values():
        for value, job_status in table.items():
            lookup.setdefault(value, job_status)
    lookup.update(LEGACY_STATUS_TABLE)
    # Canonical values map to themselves and win over same-spelled department values
    lookup.update({s.value: s for s in JobStatus})
    return lookup


_REGISTERED_LOOKUP = _build_registered_lookup()


def is_registered_status(value: str) -> bool:
    """Whether a string is an exact entry of any translation table."""
    return value in _STEP_LOOKUP or value in _REGISTERED_LOOKUP


def map_to_job_status(
    department_status: Optional[str] = None,
    department: Optional[str] = None,
    workflow_status: Optional[str] = None,
) -> JobStatus:
    """
    Map step and department statuses to the canonical job status.

    Pure and total: never raises, unknown input degrades to keyword
    heuristics and finally PENDING.

    Args:
        department_status: Department-local status value
        department: Department reporting the status, scopes the lookup
        workflow_status: Generic step status, takes precedence when registered

    Returns:
        Canonical JobStatus
    """
    workflow_value = db_value(workflow_status)
    department_value = db_value(department_status)

    if isinstance(workflow_value, str) and workflow_value in _STEP_LOOKUP:
        return _STEP_LOOKUP[workflow_value]

    if isinstance(department_value, str):
        scoped = _DEPARTMENT_LOOKUP.get(db_value(department)) if department else None
        if scoped and department_value in scoped:
            return scoped[department_value]
        if department_value in _REGISTERED_LOOKUP:
            return _REGISTERED_LOOKUP[department_value]

    candidate = workflow_value or department_value
    if not isinstance(candidate, str) or not candidate:
        return JobStatus.PENDING

    upper = candidate.upper()
    for keyword, job_status in KEYWORD_RULES:
        if keyword in upper:
            logger.warning(
                "Unregistered status '%s' (department=%s) mapped to %s by keyword",
                candidate,
                db_value(department),
                job_status.value,
            )
            return job_status

    logger.warning(
        "Unregistered status '%s' (department=%s) defaulted to PENDING", candidate, db_value(department)
    )
    return JobStatus.PENDING


def department_to_step_status(department: Department, status: Enum) -> StepStatus:
    """Translate a department-local status into the step status it implies."""
    return DEPARTMENT_TO_STEP_STATUS[department][status]


def status_message(status: StepStatus, step_name: str, department: str) -> str:
    """Human-readable message for a step status, e.g. ``Pending in Die Cutting (Cutting)``."""
    friendly = STEP_STATUS_MESSAGES.get(status, db_value(status))
    return f"{friendly} in {step_name} ({db_value(department)})"


def revision_message(step: JobWorkflowStep) -> str:
    return f"Revision Required - Back to {step.step_name} ({step.department})"


def update_job_status(
    store: WorkflowStore,
    job_id: int,
    department_status: Optional[str] = None,
    department: Optional[str] = None,
    workflow_status: Optional[str] = None,
    actor: Optional[str] = None,
    message: Optional[str] = None,
    current_step: Optional[JobWorkflowStep] = None,
) -> JobStatus:
    """
    Write a job's canonical status in one UPDATE.

    Writes canonical status, current department, status message and
    last-updated actor; with ``current_step`` also the step pointer and its
    step status. No other side effects, so it is safe both inside a
    progression operation and standalone as a repair tool.

    Returns:
        The canonical status written

    Raises:
        NotFoundError: If the job does not exist
    """
    canonical = map_to_job_status(department_status, department, workflow_status)

    changes = {"status": canonical, "last_updated_by": actor}
    if department is not None:
        changes["current_department"] = department
    if message is not None:
        changes["status_message"] = message
    if current_step is not None:
        changes["current_step"] = current_step.step_name
        changes["workflow_status"] = current_step.status
    elif workflow_status is not None:
        changes["workflow_status"] = workflow_status

    store.update_job(job_id, get_current_utc_timestamp(), **changes)
    logger.debug(
        "Job %s canonical status -> %s (department=%s, department_status=%s, workflow_status=%s)",
        job_id,
        canonical.value,
        db_value(department),
        db_value(department_status),
        db_value(workflow_status),
    )
    return canonical


def sync_job_status_from_workflow(
    store: WorkflowStore, job_id: int, actor: Optional[str] = None
) -> JobStatus:
    """
    Re-derive a job's canonical status from its step rows and rewrite it.

    Uses the highest-sequence active step. When no step is active and every
    eligible step is completed the job is COMPLETED; otherwise the job's
    stored workflow status is re-mapped.

    Raises:
        NotFoundError: If the job does not exist
    """
    job = store.get_job(job_id)
    steps = store.list_steps(job_id)

    active = [step for step in steps if step.status in ACTIVE_STEP_STATUSES]
    if active:
        current = active[-1]
        canonical = update_job_status(
            store,
            job_id,
            department=current.department,
            workflow_status=current.status,
            actor=actor,
            message=current.status_message
            or status_message(current.status, current.step_name, current.department),
            current_step=current,
        )
    elif steps and all(
        step.status == StepStatus.COMPLETED for step in steps if step.is_eligible
    ):
        # Unscoped: canonical spellings resolve to themselves
        canonical = update_job_status(
            store,
            job_id,
            department_status=JobStatus.COMPLETED,
            department=None,
            workflow_status=None,
            actor=actor,
            message=JOB_COMPLETED_MESSAGE,
        )
    else:
        canonical = update_job_status(
            store,
            job_id,
            department_status=job.status,
            department=None,
            workflow_status=job.workflow_status,
            actor=actor,
        )

    if canonical.value != job.status:
        logger.info("Healed job %s canonical status %s -> %s", job_id, job.status, canonical.value)
        AuditLog(store).append(
            job_id,
            job.current_department,
            canonical,
            actor,
            note="Canonical status re-derived from workflow",
            from_status=job.status,
        )
    return canonical

