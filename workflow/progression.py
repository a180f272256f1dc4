"""
Department progression engine.

Generic orchestration shared by every department: locate the job's current
step for the calling department, write the new step status, reconcile the
canonical job status, append to the audit trail, advance to the next
eligible step on completion or rewind to the nearest completed step on
rejection, and notify interested parties once the work has committed.

Every public operation runs in one store transaction. Step rows are written
with compare-and-swap on their version, so of two operators racing on the
same step the first to commit wins and the other gets ConcurrentUpdateError.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from db.audit_writer import AuditLog
from db.workflow_store import WorkflowStore, db_value
from models.errors import NoActiveStepError, NotFoundError, ToolError, create_validation_error
from models.status import (
    ACTIVE_STEP_STATUSES,
    COMPLETION_STEP_STATUSES,
    REWORK_STEP_STATUSES,
    Department,
    JobStatus,
    StepStatus,
)
from schemas.workflow import JobWorkflowStep
from utils.validation import (
    coerce_status,
    coerce_step_status,
    get_current_utc_timestamp,
    normalize_department,
    validate_job_id,
    validate_note,
)
from workflow.catalog import WorkflowDefinitionCatalog
from workflow.instance import JobWorkflowInstance
from workflow.notifications import (
    ADMIN_ROLE,
    EventBuffer,
    NotificationFanout,
    roles_for_department,
)
from workflow.status_reconciler import (
    DEPARTMENT_TO_STEP_STATUS,
    JOB_COMPLETED_MESSAGE,
    revision_message,
    status_message,
    update_job_status,
)

logger = logging.getLogger(__name__)

DEPARTMENT_JOB_FILTERS = frozenset({"status", "assigned_to", "priority", "due_from", "due_to", "limit"})


def department_slug(department) -> str:
    """Event prefix for a department name, e.g. ``offset_printing``."""
    return str(db_value(department)).strip().lower().replace(" ", "_").replace("-", "_")


class EngineOperation:
    """State shared by the steps of one engine operation."""

    def __init__(self, store: WorkflowStore, actor: Optional[str], events: EventBuffer):
        self.store = store
        self.actor = actor
        self.events = events
        self.audit = AuditLog(store)
        self.timestamp = get_current_utc_timestamp()


class DepartmentProgressionEngine:
    """
    Workflow operations as seen from one department.

    Departments with their own status vocabulary subclass this and set
    ``department`` and ``vocabulary``; any other department uses it directly
    with generic step statuses.

    Usage:
        engine = DepartmentProgressionEngine("Finishing", catalog, db_path=db)
        engine.update_status(42, "in_progress", actor="op-7")
        engine.update_status(42, "completed", actor="op-7", note="Laminated")
    """

    department: Department
    vocabulary: Optional[Type[Enum]] = None

    def __init__(
        self,
        department: Optional[Union[str, Department]] = None,
        catalog: Optional[WorkflowDefinitionCatalog] = None,
        db_path: Optional[str] = None,
        fanout: Optional[NotificationFanout] = None,
        default_product_type: Optional[str] = None,
    ):
        """
        Args:
            department: Department this engine acts for; subclasses fix it
            catalog: Step sequences used for lazy workflow generation
            db_path: Optional database path override
            fanout: Notification fanout; None drops events
            default_product_type: Fallback sequence for lazy generation
        """
        if department is not None:
            self.department = normalize_department(department)
        elif getattr(type(self), "department", None) is None:
            raise ValueError("A department is required for the generic progression engine")
        if catalog is None:
            raise ValueError("A workflow definition catalog is required")

        self.catalog = catalog
        self.db_path = db_path
        self.fanout = fanout
        self.instance = JobWorkflowInstance(
            catalog, db_path=db_path, fanout=fanout, default_product_type=default_product_type
        )

    @property
    def slug(self) -> str:
        return department_slug(self.department)

    @property
    def roles(self) -> List[str]:
        return roles_for_department(self.department)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get_department_jobs(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        List jobs whose current step belongs to this department.

        Args:
            filters: Optional ``status``, ``assigned_to``, ``priority``,
                ``due_from``, ``due_to`` and ``limit``

        Returns:
            One dict per job with job, step and assignment fields
        """
        filters = dict(filters or {})
        unknown = set(filters) - DEPARTMENT_JOB_FILTERS
        if unknown:
            raise create_validation_error(f"Unsupported filters: {', '.join(sorted(unknown))}")
        if filters.get("status") is not None:
            department_status, step_status = self._parse_status(filters.pop("status"))
            # Department values live on the assignment row, step statuses on the step
            if department_status is not None:
                filters["department_status"] = db_value(department_status)
            else:
                filters["status"] = step_status.value

        with WorkflowStore(self.db_path) as store:
            return store.query_department_jobs(self.department, **filters)

    def update_status(
        self, job_id: int, status: Union[str, Enum], actor: Optional[str], note: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record a department's progress on its current step of a job.

        Completion-equivalent values advance the workflow; rejection values
        run the rework loop.

        Args:
            job_id: Job being reported on
            status: Department-local status, or a generic step status
            actor: Who reported it
            note: Optional free-text comment

        Returns:
            Summary of the step and the job after the update

        Raises:
            ToolError: VALIDATION_ERROR for an unknown status value
            NotFoundError: If the job or its catalog sequence does not exist
            NoActiveStepError: If the department has no current step for the job
            ConcurrentUpdateError: If the step changed concurrently
        """
        job_id = validate_job_id(job_id)
        department_status, step_status = self._parse_status(status)
        note = validate_note(note)

        with self._operation(actor) as op:
            return self._apply_status(op, job_id, department_status, step_status, note)

    def progress_to_next_step(
        self,
        job_id: int,
        completed_step: Union[int, JobWorkflowStep],
        actor: Optional[str] = None,
    ) -> Optional[JobWorkflowStep]:
        """
        Activate the next eligible step after a completed one.

        Unselected optional steps are skipped without being surfaced. A next
        step that is already active or done is left alone, so calling this
        twice for the same completed step never advances further.

        Args:
            job_id: Job to progress
            completed_step: The completed step or its sequence number
            actor: Who triggered progression

        Returns:
            The next step, or None when the job has completed

        Raises:
            NotFoundError: If the job or step does not exist
            ToolError: VALIDATION_ERROR if the given step is not completed
        """
        job_id = validate_job_id(job_id)
        sequence_number = (
            completed_step.sequence_number
            if isinstance(completed_step, JobWorkflowStep)
            else completed_step
        )

        with self._operation(actor) as op:
            steps = op.store.list_steps(job_id)
            step = next((s for s in steps if s.sequence_number == sequence_number), None)
            if step is None:
                op.store.get_job(job_id)
                raise NotFoundError(f"Job {job_id} has no workflow step {sequence_number}")
            if step.status not in COMPLETION_STEP_STATUSES:
                raise create_validation_error(
                    f"Step {sequence_number} of job {job_id} is {step.status.value}, not completed"
                )
            return self._progress(op, job_id, sequence_number)

    def handle_department_rejected(
        self, job_id: int, actor: Optional[str], note: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Reject the department's current step and rewind the job.

        The current step becomes revision_required and the nearest earlier
        completed step is reactivated to pending. Without an earlier completed
        step the rejection is recorded but changes nothing.

        Raises:
            NoActiveStepError: If the department has no current step for the job
        """
        job_id = validate_job_id(job_id)
        note = validate_note(note)
        with self._operation(actor) as op:
            self._ensure_workflow(op, job_id)
            step = self._current_step(op.store, job_id)
            return self._reject(op, job_id, step, note, self._vocabulary_value(StepStatus.REJECTED))

    def assign(
        self,
        job_id: int,
        assignee: str,
        resource: Optional[str] = None,
        actor: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Bind the job to an operator and optionally a machine in this department.

        Upserts the single assignment row for (job, department). Step and
        canonical job status are left untouched.

        Returns:
            The assignment row
        """
        job_id = validate_job_id(job_id)
        assignee = validate_note(assignee, "assignee")
        if assignee is None:
            raise create_validation_error("Invalid assignee: cannot be empty")
        resource = validate_note(resource, "resource")
        comments = validate_note(comments, "comments")
        assigned_value = db_value(self._vocabulary_value(StepStatus.PENDING, prefer="ASSIGNED") or "Assigned")

        with self._operation(actor) as op:
            job = op.store.get_job(job_id)
            assignment = op.store.upsert_assignment(
                job_id,
                self.department,
                assigned_value,
                op.timestamp,
                assigned_to=assignee,
                resource=resource,
                assigned_by=actor,
                comments=comments,
            )

            step = self._find_current_step(op.store, job_id)
            if step is not None and step.assigned_to != assignee:
                op.store.update_step(step, op.timestamp, assigned_to=assignee, updated_by=actor)

            note = f"Assigned to {assignee}" + (f" on {resource}" if resource else "")
            op.audit.append(
                job_id,
                self.department,
                assigned_value,
                actor,
                note=note,
                step_name=step.step_name if step else None,
            )
            op.events.add(
                f"{self.slug}:job_assigned",
                {
                    "job_id": job_id,
                    "assigned_to": assignee,
                    "resource": resource,
                    "assigned_by": actor,
                },
                roles=self.roles,
            )
            op.events.add(
                "notification",
                {
                    "type": "job_assigned",
                    "title": f"New {self.department.value} job",
                    "message": f"Job {job.job_number or job_id} has been assigned to you",
                    "job_id": job_id,
                },
                user=assignee,
            )
            logger.info("Job %s assigned to %s in %s", job_id, assignee, self.department.value)
            return assignment.model_dump()

    def add_comment(self, job_id: int, actor: Optional[str], text: str) -> Dict[str, Any]:
        """
        Append a timestamped comment to the job's assignment in this department.

        Creates a pending assignment row when the department has none yet.

        Returns:
            The assignment row
        """
        job_id = validate_job_id(job_id)
        text = validate_note(text, "text")
        if text is None:
            raise create_validation_error("Invalid text: cannot be empty")
        pending_value = db_value(self._vocabulary_value(StepStatus.PENDING, prefer="PENDING") or "Pending")

        with self._operation(actor) as op:
            op.store.get_job(job_id)
            if op.store.get_assignment(job_id, self.department) is None:
                op.store.upsert_assignment(job_id, self.department, pending_value, op.timestamp)

            line = f"[{op.timestamp}] {text}"
            assignment = op.store.append_assignment_comment(
                job_id, self.department, line, op.timestamp
            )

            step = self._find_current_step(op.store, job_id)
            op.audit.append(
                job_id,
                self.department,
                "commented",
                actor,
                note=text,
                step_name=step.step_name if step else None,
            )
            op.events.add(
                f"{self.slug}:comment_added",
                {"job_id": job_id, "comment": text, "author": actor},
                roles=self.roles,
            )
            return assignment.model_dump()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, actor: Optional[str]):
        """One transaction; buffered events are emitted only after commit."""
        events = EventBuffer()
        with WorkflowStore(self.db_path) as store:
            yield EngineOperation(store, actor, events)
            store.commit()
        events.flush(self.fanout)

    def _parse_status(self, status) -> Tuple[Optional[Enum], StepStatus]:
        """
        Resolve input to (department status or None, step status).

        ``inactive`` is only ever written by workflow generation and is never
        accepted from a department.
        """
        department_status = None
        if self.vocabulary is None:
            step_status = coerce_step_status(status)
        else:
            try:
                department_status = coerce_status(status, self.vocabulary)
                step_status = DEPARTMENT_TO_STEP_STATUS[self.department][department_status]
            except ToolError:
                try:
                    step_status = coerce_step_status(status)
                except ToolError:
                    allowed = ", ".join(member.value for member in self.vocabulary)
                    raise create_validation_error(
                        f"Invalid status: '{status}' for {self.department.value}. "
                        f"Allowed values: {allowed}, or a workflow step status"
                    )

        if step_status == StepStatus.INACTIVE:
            raise create_validation_error(
                f"Invalid status: '{db_value(status)}' cannot be reported by "
                f"{self.department.value}; inactive is set only by workflow generation"
            )
        return department_status, step_status

    def _vocabulary_value(self, step_status: StepStatus, prefer: Optional[str] = None) -> Optional[Enum]:
        """Department status that implies a step status, None for generic departments."""
        if self.vocabulary is None:
            return None
        table = DEPARTMENT_TO_STEP_STATUS[self.department]
        candidates = [member for member, mapped in table.items() if mapped == step_status]
        if prefer is not None:
            for member in candidates:
                if member.name == prefer:
                    return member
        return candidates[0] if candidates else None

    def _ensure_workflow(self, op: EngineOperation, job_id: int) -> None:
        self.instance.materialize(op.store, job_id, actor=op.actor, events=op.events)

    def _find_current_step(self, store: WorkflowStore, job_id: int) -> Optional[JobWorkflowStep]:
        for step in store.list_steps(job_id):
            if step.department == self.department.value and step.status in ACTIVE_STEP_STATUSES:
                return step
        return None

    def _current_step(self, store: WorkflowStore, job_id: int) -> JobWorkflowStep:
        step = self._find_current_step(store, job_id)
        if step is None:
            raise NoActiveStepError(job_id, self.department.value)
        return step

    def _apply_status(
        self,
        op: EngineOperation,
        job_id: int,
        department_status: Optional[Enum],
        step_status: StepStatus,
        note: Optional[str],
    ) -> Dict[str, Any]:
        self._ensure_workflow(op, job_id)
        step = self._current_step(op.store, job_id)
        if step_status in REWORK_STEP_STATUSES:
            return self._reject(op, job_id, step, note, department_status)
        return self._advance(op, job_id, step, step_status, note, department_status)

    def _advance(
        self,
        op: EngineOperation,
        job_id: int,
        step: JobWorkflowStep,
        step_status: StepStatus,
        note: Optional[str],
        department_status: Optional[Enum],
    ) -> Dict[str, Any]:
        from_status = step.status
        # approved is recorded as such, then settles as completed
        settled = StepStatus.COMPLETED if step_status in COMPLETION_STEP_STATUSES else step_status
        message = status_message(step_status, step.step_name, step.department)

        changes = {"status": settled, "status_message": message, "updated_by": op.actor}
        if settled == StepStatus.COMPLETED:
            changes["completed_at"] = op.timestamp
        step = op.store.update_step(step, op.timestamp, **changes)

        update_job_status(
            op.store,
            job_id,
            department_status=department_status,
            department=step.department,
            workflow_status=None if department_status is not None else step_status,
            actor=op.actor,
            message=message,
            current_step=step,
        )
        op.audit.append(
            job_id,
            step.department,
            step_status,
            op.actor,
            note=note or (f"Reported {db_value(department_status)}" if department_status else None),
            from_status=from_status,
            step_name=step.step_name,
            status_message=message,
        )
        if department_status is not None:
            self._record_assignment_status(op, job_id, department_status, step_status)

        op.events.add(
            f"{self.slug}:status_updated",
            {
                "job_id": job_id,
                "status": db_value(department_status or step_status),
                "step_name": step.step_name,
                "updated_by": op.actor,
            },
            roles=self.roles,
        )
        self._on_status_reported(op, job_id, step, department_status, step_status)

        next_step = None
        if settled == StepStatus.COMPLETED:
            self._on_step_completed(op, job_id, step)
            next_step = self._progress(op, job_id, step.sequence_number)

        return self._summary(op.store, job_id, step, department_status, next_step=next_step)

    def _progress(
        self, op: EngineOperation, job_id: int, completed_sequence: int
    ) -> Optional[JobWorkflowStep]:
        for candidate in op.store.list_steps(job_id):
            if candidate.sequence_number <= completed_sequence:
                continue
            if candidate.status == StepStatus.INACTIVE and not candidate.is_eligible:
                logger.debug(
                    "Skipping unselected optional step %s (%s) of job %s",
                    candidate.sequence_number,
                    candidate.step_name,
                    job_id,
                )
                continue
            if candidate.status in (StepStatus.INACTIVE, StepStatus.REVISION_REQUIRED):
                return self._activate(op, job_id, candidate)
            # Already active or done
            return candidate

        self._complete_job(op, job_id)
        return None

    def _activate(self, op: EngineOperation, job_id: int, step: JobWorkflowStep) -> JobWorkflowStep:
        from_status = step.status
        message = status_message(StepStatus.PENDING, step.step_name, step.department)
        step = op.store.update_step(
            step,
            op.timestamp,
            status=StepStatus.PENDING,
            status_message=message,
            activated_at=op.timestamp,
            completed_at=None,
            updated_by=op.actor,
        )
        update_job_status(
            op.store,
            job_id,
            department=step.department,
            workflow_status=StepStatus.PENDING,
            actor=op.actor,
            message=message,
            current_step=step,
        )
        op.audit.append(
            job_id,
            step.department,
            StepStatus.PENDING,
            op.actor,
            note="Activated by workflow progression",
            from_status=from_status,
            step_name=step.step_name,
            status_message=message,
        )
        payload = {
            "job_id": job_id,
            "sequence_number": step.sequence_number,
            "step_name": step.step_name,
            "department": step.department,
        }
        op.events.add("workflow:step_activated", payload, roles=roles_for_department(step.department))
        op.events.add(
            f"{department_slug(step.department)}:job_ready",
            payload,
            roles=roles_for_department(step.department),
        )
        logger.info(
            "Job %s advanced to step %s (%s, %s)",
            job_id,
            step.sequence_number,
            step.step_name,
            step.department,
        )
        return step

    def _complete_job(self, op: EngineOperation, job_id: int) -> None:
        job = op.store.get_job(job_id)
        if job.status == JobStatus.COMPLETED.value:
            return

        update_job_status(
            op.store,
            job_id,
            department_status=JobStatus.COMPLETED,
            actor=op.actor,
            message=JOB_COMPLETED_MESSAGE,
        )
        op.audit.append(
            job_id,
            job.current_department,
            JobStatus.COMPLETED,
            op.actor,
            note="All workflow steps completed",
            from_status=job.status,
            step_name=job.current_step,
            status_message=JOB_COMPLETED_MESSAGE,
        )
        op.events.add(
            "workflow:job_completed",
            {"job_id": job_id, "job_number": job.job_number},
            roles=[ADMIN_ROLE],
        )
        logger.info("Job %s completed its workflow", job_id)

    def _reject(
        self,
        op: EngineOperation,
        job_id: int,
        step: JobWorkflowStep,
        note: Optional[str],
        department_status: Optional[Enum],
    ) -> Dict[str, Any]:
        earlier = [
            s
            for s in op.store.list_steps(job_id)
            if s.sequence_number < step.sequence_number and s.status == StepStatus.COMPLETED
        ]
        previous = earlier[-1] if earlier else None

        if department_status is not None:
            self._record_assignment_status(op, job_id, department_status, StepStatus.REJECTED)

        if previous is None:
            logger.warning(
                "Rejection of job %s at step %s (%s) has no earlier completed step; recorded only",
                job_id,
                step.sequence_number,
                step.step_name,
            )
            op.audit.append(
                job_id,
                step.department,
                StepStatus.REJECTED,
                op.actor,
                note=note or "Rejected with no earlier completed step to return to",
                from_status=step.status,
                step_name=step.step_name,
            )
            op.events.add(
                f"{self.slug}:status_updated",
                {
                    "job_id": job_id,
                    "status": db_value(department_status or StepStatus.REJECTED),
                    "step_name": step.step_name,
                    "updated_by": op.actor,
                },
                roles=self.roles,
            )
            return self._summary(op.store, job_id, step, department_status)

        from_status = step.status
        rejected_message = (
            f"Revision Required - {note}"
            if note
            else status_message(StepStatus.REVISION_REQUIRED, step.step_name, step.department)
        )
        step = op.store.update_step(
            step,
            op.timestamp,
            status=StepStatus.REVISION_REQUIRED,
            status_message=rejected_message,
            updated_by=op.actor,
        )

        message = revision_message(previous)
        previous = op.store.update_step(
            previous,
            op.timestamp,
            status=StepStatus.PENDING,
            status_message=message,
            activated_at=op.timestamp,
            completed_at=None,
            updated_by=op.actor,
        )

        update_job_status(
            op.store,
            job_id,
            department=previous.department,
            workflow_status=StepStatus.REVISION_REQUIRED,
            actor=op.actor,
            message=message,
            current_step=previous,
        )
        op.audit.append(
            job_id,
            step.department,
            StepStatus.REVISION_REQUIRED,
            op.actor,
            note=note or "Rejected",
            from_status=from_status,
            step_name=step.step_name,
            status_message=rejected_message,
        )
        op.audit.append(
            job_id,
            previous.department,
            StepStatus.PENDING,
            op.actor,
            note=f"Reactivated for rework after rejection at {step.step_name}",
            from_status=StepStatus.COMPLETED,
            step_name=previous.step_name,
            status_message=message,
        )

        payload = {
            "job_id": job_id,
            "step_name": step.step_name,
            "department": step.department,
            "rolled_back_to": previous.step_name,
            "rolled_back_department": previous.department,
            "note": note,
        }
        roles = sorted(
            set(roles_for_department(step.department)) | set(roles_for_department(previous.department))
        )
        op.events.add("workflow:step_rejected", payload, roles=roles)
        op.events.add(
            f"{department_slug(previous.department)}:job_ready",
            payload,
            roles=roles_for_department(previous.department),
        )
        op.events.add(
            f"{self.slug}:status_updated",
            {
                "job_id": job_id,
                "status": db_value(department_status or StepStatus.REJECTED),
                "step_name": step.step_name,
                "updated_by": op.actor,
            },
            roles=self.roles,
        )
        logger.info(
            "Job %s rejected at %s; returned to %s (%s)",
            job_id,
            step.step_name,
            previous.step_name,
            previous.department,
        )
        return self._summary(op.store, job_id, step, department_status, rolled_back_to=previous)

    def _record_assignment_status(
        self, op: EngineOperation, job_id: int, department_status: Enum, step_status: StepStatus
    ) -> None:
        """Mirror a department status onto the department's assignment row."""
        op.store.upsert_assignment(
            job_id,
            self.department,
            db_value(department_status),
            op.timestamp,
            started_at=op.timestamp if step_status == StepStatus.IN_PROGRESS else None,
            finished_at=op.timestamp if step_status in COMPLETION_STEP_STATUSES else None,
        )

    def _on_status_reported(
        self,
        op: EngineOperation,
        job_id: int,
        step: JobWorkflowStep,
        department_status: Optional[Enum],
        step_status: StepStatus,
    ) -> None:
        """Hook run after a non-rejecting status report has been written."""

    def _on_step_completed(self, op: EngineOperation, job_id: int, step: JobWorkflowStep) -> None:
        """Hook run when this department completes a step, before progression."""
        op.events.add(
            "notification",
            {
                "type": f"{self.slug}_completed",
                "title": f"{self.department.value} Completed",
                "message": f"{step.step_name} has been completed",
                "job_id": job_id,
            },
            roles=self.roles,
        )

    def _summary(
        self,
        store: WorkflowStore,
        job_id: int,
        step: JobWorkflowStep,
        department_status: Optional[Enum],
        next_step: Optional[JobWorkflowStep] = None,
        rolled_back_to: Optional[JobWorkflowStep] = None,
    ) -> Dict[str, Any]:
        job = store.get_job(job_id)
        return {
            "job_id": job_id,
            "department": self.department.value,
            "step_name": step.step_name,
            "sequence_number": step.sequence_number,
            "step_status": step.status.value,
            "department_status": db_value(department_status),
            "job_status": job.status,
            "status_message": job.status_message,
            "current_step": job.current_step,
            "current_department": job.current_department,
            "next_step": next_step.step_name if next_step else None,
            "rolled_back_to": rolled_back_to.step_name if rolled_back_to else None,
            "job_completed": job.status == JobStatus.COMPLETED.value,
        }
