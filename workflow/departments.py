"""
Department specializations of the progression engine.

Each department that reports in its own vocabulary gets a thin subclass
fixing the department and its status Enum. Translation into step and
canonical statuses is table-driven in ``workflow.status_reconciler``; the
subclasses only add department-specific notifications and data capture.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Type, Union

from models.errors import create_validation_error
from models.status import (
    CuttingStatus,
    Department,
    DigitalPrintingStatus,
    OffsetPrintingStatus,
    PrepressStatus,
    ProductionStatus,
)
from schemas.workflow import JobWorkflowStep
from utils.validation import normalize_department, validate_job_id, validate_note
from workflow.catalog import WorkflowDefinitionCatalog
from workflow.notifications import ADMIN_ROLE, DEPARTMENT_HEAD_ROLES, NotificationFanout
from workflow.progression import DepartmentProgressionEngine, EngineOperation

logger = logging.getLogger(__name__)

QA_ROLES = [DEPARTMENT_HEAD_ROLES[Department.QA], ADMIN_ROLE]


def _request_qa(op: EngineOperation, job_id: int, step: JobWorkflowStep, source: str) -> None:
    op.events.add(
        "notification",
        {
            "type": "qa_review_requested",
            "title": "QA Review Requested",
            "message": f"{step.step_name} from {source} is waiting for QA",
            "job_id": job_id,
        },
        roles=QA_ROLES,
    )


class PrepressEngine(DepartmentProgressionEngine):
    """Design, HOD review, QA and CTP for artwork and plates."""

    department = Department.PREPRESS
    vocabulary = PrepressStatus

    def _on_status_reported(self, op, job_id, step, department_status, step_status):
        if department_status == PrepressStatus.SUBMITTED_FOR_QA:
            _request_qa(op, job_id, step, self.department.value)


class CuttingEngine(DepartmentProgressionEngine):
    department = Department.CUTTING
    vocabulary = CuttingStatus


class OffsetPrintingEngine(DepartmentProgressionEngine):
    department = Department.OFFSET_PRINTING
    vocabulary = OffsetPrintingStatus


class ProductionEngine(DepartmentProgressionEngine):
    """Press floor: setup, printing and in-line quality checks."""

    department = Department.PRODUCTION
    vocabulary = ProductionStatus

    def _on_status_reported(self, op, job_id, step, department_status, step_status):
        if department_status == ProductionStatus.QUALITY_CHECK:
            _request_qa(op, job_id, step, self.department.value)


class DigitalPrintingEngine(DepartmentProgressionEngine):
    """Digital presses; operators also report machine and sheet counts."""

    department = Department.DIGITAL_PRINTING
    vocabulary = DigitalPrintingStatus

    def record_output(
        self,
        job_id: int,
        actor: Optional[str],
        machine: Optional[str] = None,
        output_sheets: Optional[int] = None,
        reject_sheets: Optional[int] = None,
        status: Optional[Union[str, Enum]] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a print run on the job's digital printing assignment.

        The machine is stored as the assignment's resource and the sheet
        counts as a comment line. With ``status`` the department status is
        applied in the same transaction.

        Args:
            job_id: Job being printed
            actor: Operator reporting the run
            machine: Press used for the run
            output_sheets: Good sheets produced
            reject_sheets: Sheets spoiled
            status: Optional department status to apply afterwards
            notes: Free-text comment

        Returns:
            The assignment row, plus ``progress`` when a status was applied
        """
        job_id = validate_job_id(job_id)
        machine = validate_note(machine, "machine")
        notes = validate_note(notes, "notes")
        for name, value in (("output_sheets", output_sheets), ("reject_sheets", reject_sheets)):
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise create_validation_error(f"Invalid {name}: must be a non-negative integer")
        parsed = self._parse_status(status) if status is not None else None

        with self._operation(actor) as op:
            op.store.get_job(job_id)
            existing = op.store.get_assignment(job_id, self.department)
            op.store.upsert_assignment(
                job_id,
                self.department,
                existing.status if existing else DigitalPrintingStatus.PENDING,
                op.timestamp,
                resource=machine,
            )

            line = f"[{op.timestamp}] {machine or 'Unknown machine'}: {output_sheets or 0} sheets"
            if reject_sheets:
                line += f", {reject_sheets} rejected"
            if notes:
                line += f" - {notes}"
            assignment = op.store.append_assignment_comment(job_id, self.department, line, op.timestamp)

            step = self._find_current_step(op.store, job_id)
            op.audit.append(
                job_id,
                self.department,
                "output_recorded",
                actor,
                note=notes or f"Digital Printing data updated: {machine or ''} {output_sheets or 0} sheets",
                step_name=step.step_name if step else None,
            )
            op.events.add(
                f"{self.slug}:output_recorded",
                {
                    "job_id": job_id,
                    "machine": machine,
                    "output_sheets": output_sheets,
                    "reject_sheets": reject_sheets,
                },
                roles=self.roles,
            )

            result = assignment.model_dump()
            if parsed is not None:
                department_status, step_status = parsed
                result["progress"] = self._apply_status(
                    op, job_id, department_status, step_status, notes
                )
                result["status"] = op.store.get_assignment(job_id, self.department).status
            return result


DEPARTMENT_ENGINES: Dict[Department, Type[DepartmentProgressionEngine]] = {
    Department.PREPRESS: PrepressEngine,
    Department.CUTTING: CuttingEngine,
    Department.OFFSET_PRINTING: OffsetPrintingEngine,
    Department.DIGITAL_PRINTING: DigitalPrintingEngine,
    Department.PRODUCTION: ProductionEngine,
}


def build_engine(
    department: Union[str, Department],
    catalog: WorkflowDefinitionCatalog,
    db_path: Optional[str] = None,
    fanout: Optional[NotificationFanout] = None,
    default_product_type: Optional[str] = None,
) -> DepartmentProgressionEngine:
    """
    Engine for a department name; departments without a vocabulary get the
    generic engine working on step statuses.

    Raises:
        ToolError: VALIDATION_ERROR for an unknown department
    """
    department = normalize_department(department)
    engine_class = DEPARTMENT_ENGINES.get(department)
    if engine_class is None:
        return DepartmentProgressionEngine(
            department,
            catalog,
            db_path=db_path,
            fanout=fanout,
            default_product_type=default_product_type,
        )
    return engine_class(
        catalog=catalog, db_path=db_path, fanout=fanout, default_product_type=default_product_type
    )
