"""Read helpers for tests; each opens and closes its own store."""

from typing import List, Optional

from db.audit_writer import AuditLog
from db.workflow_store import WorkflowStore
from schemas.workflow import AuditEntry, DepartmentAssignment, Job, JobWorkflowStep


def read_job(db_path: str, job_id: int) -> Job:
    with WorkflowStore(db_path) as store:
        return store.get_job(job_id)


def read_steps(db_path: str, job_id: int) -> List[JobWorkflowStep]:
    with WorkflowStore(db_path) as store:
        return store.list_steps(job_id)


def step_named(db_path: str, job_id: int, step_name: str) -> JobWorkflowStep:
    return next(step for step in read_steps(db_path, job_id) if step.step_name == step_name)


def active_steps(db_path: str, job_id: int) -> List[JobWorkflowStep]:
    return [step for step in read_steps(db_path, job_id) if step.is_active]


def read_audit(db_path: str, job_id: int) -> List[AuditEntry]:
    with WorkflowStore(db_path) as store:
        return AuditLog(store).entries(job_id)


def complete_current_step(engine_for, db_path: str, job_id: int, actor: str = "operator"):
    """Complete whatever step the job is currently on, as its department."""
    job = read_job(db_path, job_id)
    return engine_for(job.current_department).update_status(job_id, "completed", actor=actor)


def read_assignment(db_path: str, job_id: int, department: str) -> Optional[DepartmentAssignment]:
    with WorkflowStore(db_path) as store:
        return store.get_assignment(job_id, department)
