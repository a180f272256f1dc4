"""
Per-job materialization of workflow steps.

``generate`` copies a product type's catalog sequence into step rows for one
job, honouring the product's optional-step selections. It is idempotent so
departments can generate lazily when they meet a job without a workflow.
"""

import logging
from typing import List, Optional, Tuple

from db.audit_writer import AuditLog
from db.workflow_store import WorkflowStore
from models.errors import NotFoundError
from models.status import StepStatus
from schemas.workflow import Job, JobWorkflowStep, WorkflowStepDefinition
from utils.validation import get_current_utc_timestamp
from workflow.catalog import WorkflowDefinitionCatalog
from workflow.notifications import EventBuffer, NotificationFanout, roles_for_department
from workflow.status_reconciler import status_message, update_job_status

logger = logging.getLogger(__name__)


class JobWorkflowInstance:
    """
    Materializes and reads job workflows.

    Args:
        catalog: Step sequences per product type
        db_path: Optional database path override
        fanout: Optional notification fanout for step activation events
        default_product_type: Sequence used when the job's product type has
            none configured; None refuses generation instead
    """

    def __init__(
        self,
        catalog: WorkflowDefinitionCatalog,
        db_path: Optional[str] = None,
        fanout: Optional[NotificationFanout] = None,
        default_product_type: Optional[str] = None,
    ):
        self.catalog = catalog
        self.db_path = db_path
        self.fanout = fanout
        self.default_product_type = default_product_type

    def generate(
        self, job_id: int, product_id: Optional[int] = None, actor: Optional[str] = None
    ) -> List[JobWorkflowStep]:
        """
        Create the job's step rows unless they already exist.

        Args:
            job_id: Job to materialize
            product_id: Product configuration; defaults to the job's product
            actor: Who triggered generation

        Returns:
            The job's steps in sequence order

        Raises:
            NotFoundError: If the job is missing or no sequence applies
        """
        events = EventBuffer()
        with WorkflowStore(self.db_path) as store:
            steps = self.materialize(store, job_id, product_id, actor=actor, events=events)
            store.commit()
        events.flush(self.fanout)
        return steps

    def get_job_workflow(self, job_id: int) -> List[JobWorkflowStep]:
        """
        Return the job's steps in sequence order.

        Raises:
            NotFoundError: If the job does not exist
        """
        return self.load(job_id)[1]

    def load(self, job_id: int) -> Tuple[Job, List[JobWorkflowStep]]:
        """Read a job and its steps from one connection."""
        with WorkflowStore(self.db_path) as store:
            return store.get_job(job_id), store.list_steps(job_id)

    def resolve_sequence(self, product_type: Optional[str]) -> List[WorkflowStepDefinition]:
        """Catalog sequence for a product type, falling back to the configured default."""
        try:
            return self.catalog.get_sequence(product_type)
        except NotFoundError:
            if not self.default_product_type or product_type == self.default_product_type:
                raise
            logger.warning(
                "No workflow sequence for product type '%s'; using default '%s'",
                product_type,
                self.default_product_type,
            )
            return self.catalog.get_sequence(self.default_product_type)

    def materialize(
        self,
        store: WorkflowStore,
        job_id: int,
        product_id: Optional[int] = None,
        actor: Optional[str] = None,
        events: Optional[EventBuffer] = None,
    ) -> List[JobWorkflowStep]:
        """
        Generate step rows inside an open store transaction.

        The first eligible step (compulsory, or an optional step selected for
        the product) starts pending and every other step starts inactive.
        Unselected optional steps keep ``is_selected = 0`` so progression
        skips them for the job's whole lifetime.
        """
        existing = store.list_steps(job_id)
        if existing:
            logger.debug("Job %s already has %d workflow steps", job_id, len(existing))
            return existing

        job = store.get_job(job_id)
        product_id = product_id if product_id is not None else job.product_id

        product_type = job.product_type
        if product_id is not None:
            product = store.get_product(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} does not exist")
            product_type = product["product_type"]

        sequence = self.resolve_sequence(product_type)
        selected = store.get_selected_steps(product_id)
        timestamp = get_current_utc_timestamp()

        rows = []
        first = None
        for definition in sequence:
            is_selected = not definition.is_compulsory and definition.step_name in selected
            eligible = definition.is_compulsory or is_selected
            row = {
                "sequence_number": definition.sequence_number,
                "step_name": definition.step_name,
                "department": definition.department,
                "is_compulsory": definition.is_compulsory,
                "is_selected": is_selected,
                "status": StepStatus.INACTIVE,
                "updated_by": actor,
            }
            if eligible and first is None:
                first = row
                row["status"] = StepStatus.PENDING
                row["activated_at"] = timestamp
                row["status_message"] = status_message(
                    StepStatus.PENDING, definition.step_name, definition.department
                )
            rows.append(row)

        store.insert_steps(job_id, rows, timestamp)
        steps = store.list_steps(job_id)
        logger.info(
            "Generated %d workflow steps for job %s (product type %s)",
            len(steps),
            job_id,
            product_type,
        )

        if first is None:
            logger.warning("Job %s has no eligible workflow step", job_id)
            return steps

        first_step = next(s for s in steps if s.sequence_number == first["sequence_number"])
        update_job_status(
            store,
            job_id,
            department=first_step.department,
            workflow_status=first_step.status,
            actor=actor,
            message=first_step.status_message,
            current_step=first_step,
        )
        AuditLog(store).append(
            job_id,
            first_step.department,
            first_step.status,
            actor,
            note="Workflow generated",
            from_status=StepStatus.INACTIVE,
            step_name=first_step.step_name,
            status_message=first_step.status_message,
        )
        if events is not None:
            events.add(
                "workflow:step_activated",
                {
                    "job_id": job_id,
                    "sequence_number": first_step.sequence_number,
                    "step_name": first_step.step_name,
                    "department": first_step.department,
                },
                roles=roles_for_department(first_step.department),
            )
        return steps
