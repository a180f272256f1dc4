"""
Tests for the generic department progression engine.

Covers single-active-step, monotonic progression, optional step skipping,
the rework loop, completion, idempotent progression, lazy generation,
compare-and-swap conflicts and post-commit notification.
"""

import logging
import re

import pytest

from db.workflow_store import WorkflowStore
from models.errors import ConcurrentUpdateError, ErrorCode, NoActiveStepError, NotFoundError, ToolError
from models.status import JobStatus, StepStatus
from utils.validation import get_current_utc_timestamp
from workflow.instance import JobWorkflowInstance
from workflow.progression import DepartmentProgressionEngine
from workflow.status_reconciler import JOB_COMPLETED_MESSAGE

from helpers import (
    active_steps,
    complete_current_step,
    read_assignment,
    read_audit,
    read_job,
    read_steps,
    step_named,
)


@pytest.fixture
def instance(catalog, db_path, fanout):
    return JobWorkflowInstance(catalog, db_path=db_path, fanout=fanout)


@pytest.fixture
def offset_job(make_job, instance):
    """Offset job with a generated workflow and no optional steps selected."""
    job_id = make_job("Offset", job_number="JC-1001")
    instance.generate(job_id, actor="planner")
    return job_id


def walk_to(engine_for, db_path, job_id, step_name):
    """Complete steps until the job's current step is step_name."""
    for _ in range(20):
        if read_job(db_path, job_id).current_step == step_name:
            return
        complete_current_step(engine_for, db_path, job_id)
    raise AssertionError(f"Job {job_id} never reached {step_name}")


class TestFullProgression:
    """Walking a job through its whole workflow."""

    def test_walk_visits_compulsory_steps_in_order(self, offset_job, engine_for, db_path):
        """Completing each current step visits exactly the eligible steps, in order."""
        visited = []
        for _ in range(20):
            if read_job(db_path, offset_job).status == JobStatus.COMPLETED.value:
                break
            result = complete_current_step(engine_for, db_path, offset_job)
            visited.append(result["step_name"])
            assert len(active_steps(db_path, offset_job)) <= 1

        assert visited == [
            "Design Review",
            "Plate Making",
            "Paper Cutting",
            "Offset Printing",
            "Die Cutting",
            "Packaging",
        ]

    def test_completion_writes_completed_status_and_message(self, offset_job, engine_for, db_path):
        """Progression past the last step completes the job."""
        walk_to(engine_for, db_path, offset_job, "Packaging")
        result = engine_for("Logistics").update_status(offset_job, "completed", actor="dispatch")

        assert result["job_completed"] is True
        assert result["next_step"] is None
        job = read_job(db_path, offset_job)
        assert job.status == JobStatus.COMPLETED.value
        assert job.status_message == JOB_COMPLETED_MESSAGE

    def test_unselected_optional_steps_never_activated(self, offset_job, engine_for, db_path):
        """Unselected optional steps stay inactive for the job's whole lifetime."""
        walk_to(engine_for, db_path, offset_job, "Packaging")
        complete_current_step(engine_for, db_path, offset_job)

        for name in ("Pre-Press Setup", "Color Matching", "Lamination"):
            step = step_named(db_path, offset_job, name)
            assert step.status == StepStatus.INACTIVE
            assert step.activated_at is None
            assert step.is_selected is False

    def test_selected_optional_steps_are_visited(self, make_job, instance, engine_for, db_path):
        """Optional steps selected for the product take part in progression."""
        job_id = make_job("Offset", selected_steps=("Color Matching", "Lamination"))
        instance.generate(job_id)

        visited = []
        for _ in range(20):
            if read_job(db_path, job_id).status == JobStatus.COMPLETED.value:
                break
            visited.append(complete_current_step(engine_for, db_path, job_id)["step_name"])

        assert "Color Matching" in visited
        assert "Lamination" in visited
        assert "Pre-Press Setup" not in visited
        assert visited.index("Color Matching") == visited.index("Paper Cutting") + 1

    def test_completion_is_recorded_once(self, offset_job, engine_for, db_path):
        """Re-running progression after completion writes no second completion."""
        walk_to(engine_for, db_path, offset_job, "Packaging")
        logistics = engine_for("Logistics")
        logistics.update_status(offset_job, "completed", actor="dispatch")

        assert logistics.progress_to_next_step(offset_job, 9, actor="dispatch") is None

        completions = [
            entry for entry in read_audit(db_path, offset_job) if entry.status == "COMPLETED"
        ]
        assert len(completions) == 1
        assert read_job(db_path, offset_job).status == JobStatus.COMPLETED.value


class TestProgressToNextStep:
    """Direct calls to progress_to_next_step."""

    def test_progression_is_idempotent(self, offset_job, engine_for, db_path):
        """A second call for the same completed step does not advance further."""
        prepress = engine_for("Prepress")
        prepress.update_status(offset_job, "completed", actor="designer")
        before = step_named(db_path, offset_job, "Plate Making")

        next_step = prepress.progress_to_next_step(offset_job, 1, actor="designer")

        assert next_step.step_name == "Plate Making"
        after = step_named(db_path, offset_job, "Plate Making")
        assert after.status == StepStatus.PENDING
        assert after.version == before.version
        assert step_named(db_path, offset_job, "Paper Cutting").status == StepStatus.INACTIVE

    def test_accepts_step_object(self, offset_job, engine_for, db_path):
        prepress = engine_for("Prepress")
        prepress.update_status(offset_job, "completed", actor="designer")
        completed = step_named(db_path, offset_job, "Design Review")

        next_step = prepress.progress_to_next_step(offset_job, completed, actor="designer")

        assert next_step.step_name == "Plate Making"

    def test_rejects_step_that_is_not_completed(self, offset_job, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Prepress").progress_to_next_step(offset_job, 1, actor="designer")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_unknown_step_raises_not_found(self, offset_job, engine_for):
        with pytest.raises(NotFoundError):
            engine_for("Prepress").progress_to_next_step(offset_job, 42, actor="designer")

    def test_activation_stamps_step(self, offset_job, engine_for, db_path):
        engine_for("Prepress").update_status(offset_job, "completed", actor="designer")

        plate_making = step_named(db_path, offset_job, "Plate Making")
        job = read_job(db_path, offset_job)
        assert plate_making.activated_at is not None
        assert plate_making.status_message == "Pending in Plate Making (Prepress)"
        assert job.current_step == "Plate Making"
        assert job.current_department == "Prepress"
        assert job.status == JobStatus.PENDING.value


class TestRework:
    """Rejection sends a job back to its nearest completed step."""

    def test_rejection_reactivates_previous_completed_step(self, offset_job, engine_for, db_path):
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")

        result = engine_for("Cutting").update_status(
            offset_job, "Rejected", actor="cutter", note="Wrong size"
        )

        assert result["rolled_back_to"] == "Plate Making"
        assert result["step_status"] == StepStatus.REVISION_REQUIRED.value
        assert result["department_status"] == "Rejected"
        assert result["job_status"] == JobStatus.PENDING.value

        paper_cutting = step_named(db_path, offset_job, "Paper Cutting")
        plate_making = step_named(db_path, offset_job, "Plate Making")
        assert paper_cutting.status == StepStatus.REVISION_REQUIRED
        assert plate_making.status == StepStatus.PENDING
        assert plate_making.completed_at is None

        job = read_job(db_path, offset_job)
        assert job.status == JobStatus.PENDING.value
        assert job.current_step == "Plate Making"
        assert job.current_department == "Prepress"
        assert job.status_message == "Revision Required - Back to Plate Making (Prepress)"
        assert [s.step_name for s in active_steps(db_path, offset_job)] == ["Plate Making"]

    def test_rework_resumes_at_rejected_step(self, offset_job, engine_for, db_path):
        """Completing the reworked step reactivates the step that rejected it."""
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")
        engine_for("Cutting").update_status(offset_job, "Rejected", actor="cutter")

        result = engine_for("Prepress").update_status(offset_job, "completed", actor="designer")

        assert result["next_step"] == "Paper Cutting"
        assert step_named(db_path, offset_job, "Paper Cutting").status == StepStatus.PENDING
        assert read_job(db_path, offset_job).current_department == "Cutting"

    def test_rejection_is_audited(self, offset_job, engine_for, db_path):
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")
        engine_for("Cutting").update_status(offset_job, "Rejected", actor="cutter", note="Wrong size")

        entries = read_audit(db_path, offset_job)
        rejected = [e for e in entries if e.status == StepStatus.REVISION_REQUIRED.value]
        reopened = [
            e
            for e in entries
            if e.step_name == "Plate Making" and e.from_status == StepStatus.COMPLETED.value
        ]
        assert rejected[-1].step_name == "Paper Cutting"
        assert rejected[-1].note == "Wrong size"
        assert rejected[-1].actor == "cutter"
        assert reopened[-1].status == StepStatus.PENDING.value

    def test_rejection_without_earlier_completed_step(self, offset_job, engine_for, db_path, caplog):
        """Rejecting the first step records the rejection and changes nothing."""
        with caplog.at_level(logging.WARNING):
            result = engine_for("Prepress").update_status(offset_job, "rejected", actor="qa")

        assert result["rolled_back_to"] is None
        assert step_named(db_path, offset_job, "Design Review").status == StepStatus.PENDING
        assert read_job(db_path, offset_job).current_step == "Design Review"
        assert read_audit(db_path, offset_job)[-1].status == StepStatus.REJECTED.value
        assert "no earlier completed step" in caplog.text

    def test_handle_department_rejected(self, offset_job, engine_for, db_path):
        prepress = engine_for("Prepress")
        prepress.update_status(offset_job, "completed", actor="designer")

        result = prepress.handle_department_rejected(offset_job, actor="qa", note="Bleed missing")

        assert result["step_name"] == "Plate Making"
        assert result["rolled_back_to"] == "Design Review"
        assert result["department_status"] == "REJECTED_BY_QA"
        assert step_named(db_path, offset_job, "Design Review").status == StepStatus.PENDING

        # Rework skips the unselected optional step and resumes at Plate Making
        result = prepress.update_status(offset_job, "completed", actor="designer")
        assert result["next_step"] == "Plate Making"
        assert step_named(db_path, offset_job, "Pre-Press Setup").status == StepStatus.INACTIVE

    def test_revision_required_runs_rework_loop(self, offset_job, engine_for, db_path):
        walk_to(engine_for, db_path, offset_job, "Offset Printing")

        result = engine_for("Offset Printing").update_status(
            offset_job, "revision_required", actor="printer"
        )

        assert result["rolled_back_to"] == "Paper Cutting"


class TestStatusUpdates:
    """Non-terminal status reports."""

    def test_in_progress_updates_step_and_job(self, offset_job, engine_for, db_path):
        result = engine_for("Prepress").update_status(offset_job, "in_progress", actor="designer")

        assert result["step_status"] == StepStatus.IN_PROGRESS.value
        assert result["job_status"] == JobStatus.IN_PROGRESS.value
        step = step_named(db_path, offset_job, "Design Review")
        assert step.status == StepStatus.IN_PROGRESS
        assert step.updated_by == "designer"
        assert read_job(db_path, offset_job).last_updated_by == "designer"

    def test_approved_settles_as_completed(self, offset_job, engine_for, db_path):
        result = engine_for("Prepress").update_status(offset_job, "approved", actor="qa")

        assert result["next_step"] == "Plate Making"
        design_review = step_named(db_path, offset_job, "Design Review")
        assert design_review.status == StepStatus.COMPLETED
        assert design_review.completed_at is not None
        statuses = [e.status for e in read_audit(db_path, offset_job) if e.step_name == "Design Review"]
        assert StepStatus.APPROVED.value in statuses

    def test_department_on_hold_surfaces_on_job(self, offset_job, engine_for, db_path):
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")
        cutting = engine_for("Cutting")

        result = cutting.update_status(offset_job, "On Hold", actor="cutter", note="Blade change")

        assert result["job_status"] == JobStatus.ON_HOLD.value
        assert step_named(db_path, offset_job, "Paper Cutting").status == StepStatus.IN_PROGRESS
        assignment = read_assignment(db_path, offset_job, "Cutting")
        assert assignment.status == "On Hold"

        cutting.update_status(offset_job, "In Progress", actor="cutter")
        assert read_job(db_path, offset_job).status == JobStatus.IN_PROGRESS.value

    def test_assignment_timestamps_follow_department_status(self, offset_job, engine_for, db_path):
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")
        cutting = engine_for("Cutting")

        cutting.update_status(offset_job, "In Progress", actor="cutter")
        started = read_assignment(db_path, offset_job, "Cutting").started_at
        cutting.update_status(offset_job, "Completed", actor="cutter")

        assignment = read_assignment(db_path, offset_job, "Cutting")
        assert started is not None
        assert assignment.started_at == started
        assert assignment.finished_at is not None
        assert assignment.status == "Completed"

    def test_unknown_status_is_validation_error(self, offset_job, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Cutting").update_status(offset_job, "Bogus", actor="cutter")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "Allowed values" in exc_info.value.message

    @pytest.mark.parametrize("department", ["Prepress", "Finishing"])
    @pytest.mark.parametrize("value", ["inactive", "INACTIVE", StepStatus.INACTIVE])
    def test_inactive_cannot_be_reported(self, offset_job, engine_for, db_path, department, value):
        with pytest.raises(ToolError) as exc_info:
            engine_for(department).update_status(offset_job, value, actor="designer")

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "inactive" in exc_info.value.message
        assert step_named(db_path, offset_job, "Design Review").status == StepStatus.PENDING

    def test_job_keeps_progressing_after_refused_inactive(self, offset_job, engine_for, db_path):
        prepress = engine_for("Prepress")
        with pytest.raises(ToolError):
            prepress.update_status(offset_job, "inactive", actor="designer")

        result = prepress.update_status(offset_job, "in_progress", actor="designer")

        assert result["step_status"] == StepStatus.IN_PROGRESS.value
        assert [s.step_name for s in active_steps(db_path, offset_job)] == ["Design Review"]

    def test_invalid_job_id(self, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Cutting").update_status(0, "Completed", actor="cutter")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_unknown_job_is_not_found(self, engine_for):
        with pytest.raises(NotFoundError):
            engine_for("Prepress").update_status(999, "in_progress", actor="designer")


class TestCurrentStep:
    """Department scoping of the current step."""

    def test_department_without_active_step(self, offset_job, engine_for):
        with pytest.raises(NoActiveStepError) as exc_info:
            engine_for("Cutting").update_status(offset_job, "In Progress", actor="cutter")
        assert exc_info.value.code == ErrorCode.NO_ACTIVE_STEP
        assert exc_info.value.retryable is False

    def test_lazy_generation_on_first_update(self, make_job, engine_for, db_path, recorder):
        job_id = make_job("Offset")

        engine_for("Prepress").update_status(job_id, "in_progress", actor="designer")

        steps = read_steps(db_path, job_id)
        assert len(steps) == 9
        assert steps[0].status == StepStatus.IN_PROGRESS
        assert "workflow:step_activated" in recorder.names()

    def test_failed_update_rolls_back_lazy_generation(self, make_job, engine_for, db_path, recorder):
        """A department with no current step leaves no generated rows behind."""
        job_id = make_job("Offset")

        with pytest.raises(NoActiveStepError):
            engine_for("Cutting").update_status(job_id, "In Progress", actor="cutter")

        assert read_steps(db_path, job_id) == []
        assert recorder.events == []


class TestConcurrency:
    """Compare-and-swap step writes."""

    def test_stale_step_write_conflicts(self, offset_job, engine_for, db_path):
        stale = step_named(db_path, offset_job, "Design Review")
        engine_for("Prepress").update_status(offset_job, "in_progress", actor="designer-a")

        with WorkflowStore(db_path) as store:
            with pytest.raises(ConcurrentUpdateError) as exc_info:
                store.update_step(stale, get_current_utc_timestamp(), status=StepStatus.COMPLETED)

        assert exc_info.value.code == ErrorCode.CONFLICT
        assert exc_info.value.retryable is True
        assert step_named(db_path, offset_job, "Design Review").status == StepStatus.IN_PROGRESS

    def test_version_increments_on_each_write(self, offset_job, engine_for, db_path):
        before = step_named(db_path, offset_job, "Design Review").version
        engine_for("Prepress").update_status(offset_job, "in_progress", actor="designer")
        assert step_named(db_path, offset_job, "Design Review").version == before + 1

    def test_racing_generation_conflicts(self, offset_job, db_path):
        rows = [
            {
                "sequence_number": 1,
                "step_name": "Design Review",
                "department": "Prepress",
                "is_compulsory": True,
                "is_selected": False,
                "status": StepStatus.PENDING,
            }
        ]
        with WorkflowStore(db_path) as store:
            with pytest.raises(ConcurrentUpdateError):
                store.insert_steps(offset_job, rows, get_current_utc_timestamp())


class TestNotifications:
    """Events are emitted after commit."""

    def test_completion_events(self, offset_job, engine_for, recorder):
        recorder.clear()
        engine_for("Prepress").update_status(offset_job, "completed", actor="designer")

        names = recorder.names()
        assert "prepress:status_updated" in names
        assert "workflow:step_activated" in names
        assert "prepress:job_ready" in names
        activated = recorder.payloads("workflow:step_activated")[-1]
        assert activated["step_name"] == "Plate Making"
        assert "timestamp" in activated

    def test_role_channel_receives_department_events(self, offset_job, engine_for, fanout):
        received = []
        fanout.subscribe_role("HOD_CUTTING", lambda name, payload: received.append(name))

        engine_for("Prepress").update_status(offset_job, "completed", actor="designer")
        assert received == []

        engine_for("Prepress").update_status(offset_job, "completed", actor="designer")
        assert "cutting:job_ready" in received

    def test_job_completed_event(self, offset_job, engine_for, db_path, recorder):
        walk_to(engine_for, db_path, offset_job, "Packaging")
        recorder.clear()

        engine_for("Logistics").update_status(offset_job, "completed", actor="dispatch")

        completed = recorder.payloads("workflow:job_completed")
        assert len(completed) == 1
        assert completed[0]["job_number"] == "JC-1001"

    def test_rejection_event(self, offset_job, engine_for, db_path, recorder):
        walk_to(engine_for, db_path, offset_job, "Paper Cutting")
        recorder.clear()

        engine_for("Cutting").update_status(offset_job, "Rejected", actor="cutter")

        rejected = recorder.payloads("workflow:step_rejected")
        assert rejected[0]["rolled_back_to"] == "Plate Making"
        assert "prepress:job_ready" in recorder.names()


class TestAssignments:
    """assign and add_comment."""

    def test_assign_upserts_assignment_without_touching_status(self, offset_job, engine_for, db_path):
        before = read_job(db_path, offset_job)

        assignment = engine_for("Cutting").assign(
            offset_job, "op-1", resource="Polar 115", actor="hod-cutting"
        )

        assert assignment["status"] == "Assigned"
        assert assignment["assigned_to"] == "op-1"
        assert assignment["resource"] == "Polar 115"
        assert assignment["assigned_by"] == "hod-cutting"
        after = read_job(db_path, offset_job)
        assert after.status == before.status
        assert after.current_step == before.current_step
        assert step_named(db_path, offset_job, "Paper Cutting").status == StepStatus.INACTIVE

    def test_reassign_keeps_single_row(self, offset_job, engine_for, db_path):
        cutting = engine_for("Cutting")
        cutting.assign(offset_job, "op-1", resource="Polar 115", actor="hod")
        assignment = cutting.assign(offset_job, "op-2", actor="hod")

        assert assignment["assigned_to"] == "op-2"
        assert assignment["resource"] == "Polar 115"
        with WorkflowStore(db_path) as store:
            count = store.conn.execute(
                "SELECT COUNT(*) FROM department_assignments WHERE job_id = ?", (offset_job,)
            ).fetchone()[0]
        assert count == 1

    def test_assign_marks_active_step(self, offset_job, engine_for, db_path):
        assignment = engine_for("Prepress").assign(offset_job, "designer-7", actor="hod-prepress")

        assert assignment["status"] == "ASSIGNED"
        design_review = step_named(db_path, offset_job, "Design Review")
        assert design_review.assigned_to == "designer-7"
        assert design_review.status == StepStatus.PENDING

    def test_assign_notifies_assignee(self, offset_job, engine_for, fanout):
        inbox = []
        fanout.subscribe_user("op-1", lambda name, payload: inbox.append((name, payload)))

        engine_for("Cutting").assign(offset_job, "op-1", actor="hod")

        assert [name for name, _ in inbox] == ["notification"]
        assert inbox[0][1]["type"] == "job_assigned"
        assert "JC-1001" in inbox[0][1]["message"]

    def test_assign_unknown_job(self, engine_for):
        with pytest.raises(NotFoundError):
            engine_for("Cutting").assign(404, "op-1", actor="hod")

    def test_assign_requires_assignee(self, offset_job, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Cutting").assign(offset_job, "  ", actor="hod")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_add_comment_creates_pending_assignment(self, offset_job, engine_for, db_path):
        cutting = engine_for("Cutting")

        assignment = cutting.add_comment(offset_job, "op-1", "Trimmed edges")

        assert assignment["status"] == "Pending"
        assert re.match(r"^\[\d{4}-\d{2}-\d{2}T[\d:.]+Z\] Trimmed edges$", assignment["comments"])

        assignment = cutting.add_comment(offset_job, "op-1", "Stacked for printing")
        lines = assignment["comments"].split("\n")
        assert len(lines) == 2
        assert lines[1].endswith("Stacked for printing")
        assert read_audit(db_path, offset_job)[-1].status == "commented"

    def test_add_comment_requires_text(self, offset_job, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Cutting").add_comment(offset_job, "op-1", "")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


class TestDepartmentJobs:
    """get_department_jobs queue queries."""

    @pytest.fixture
    def queue(self, make_job, instance):
        jobs = {
            "A": make_job(job_number="A", priority="low", due_date="2026-03-01"),
            "B": make_job(job_number="B", priority="normal", due_date="2026-02-01"),
            "C": make_job(job_number="C", priority="urgent"),
            "D": make_job(job_number="D", priority="urgent", due_date="2026-02-01"),
        }
        for job_id in jobs.values():
            instance.generate(job_id)
        return jobs

    def test_ordering(self, queue, engine_for):
        rows = engine_for("Prepress").get_department_jobs()
        assert [row["job_number"] for row in rows] == ["D", "B", "A", "C"]
        assert rows[0]["step_name"] == "Design Review"
        assert rows[0]["step_status"] == StepStatus.PENDING.value

    def test_status_filter(self, queue, engine_for):
        prepress = engine_for("Prepress")
        prepress.update_status(queue["B"], "in_progress", actor="designer")

        rows = prepress.get_department_jobs({"status": "in_progress"})

        assert [row["job_number"] for row in rows] == ["B"]

    def test_assignee_and_priority_filters(self, queue, engine_for):
        prepress = engine_for("Prepress")
        prepress.assign(queue["A"], "designer-1", actor="hod")

        assert [r["job_number"] for r in prepress.get_department_jobs({"assigned_to": "designer-1"})] == ["A"]
        assert [r["job_number"] for r in prepress.get_department_jobs({"priority": "URGENT"})] == ["D", "C"]

    def test_due_date_range(self, queue, engine_for):
        rows = engine_for("Prepress").get_department_jobs(
            {"due_from": "2026-02-15", "due_to": "2026-03-31"}
        )
        assert [row["job_number"] for row in rows] == ["A"]

    def test_department_status_filter_uses_assignment_status(
        self, make_job, instance, engine_for, db_path
    ):
        held = make_job(job_number="HELD")
        running = make_job(job_number="RUNNING")
        for job_id in (held, running):
            instance.generate(job_id)
            walk_to(engine_for, db_path, job_id, "Paper Cutting")
        cutting = engine_for("Cutting")
        cutting.update_status(held, "On Hold", actor="cutter")
        cutting.update_status(running, "In Progress", actor="cutter")

        on_hold = cutting.get_department_jobs({"status": "On Hold"})
        in_progress = cutting.get_department_jobs({"status": "in_progress"})

        assert [row["job_number"] for row in on_hold] == ["HELD"]
        assert on_hold[0]["assignment_status"] == "On Hold"
        assert [row["job_number"] for row in in_progress] == ["RUNNING"]

    def test_inactive_status_filter_is_refused(self, queue, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Prepress").get_department_jobs({"status": "inactive"})
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_other_department_sees_nothing(self, queue, engine_for):
        assert engine_for("Cutting").get_department_jobs() == []

    def test_unknown_filter(self, queue, engine_for):
        with pytest.raises(ToolError) as exc_info:
            engine_for("Prepress").get_department_jobs({"colour": "red"})
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


class TestConstruction:
    def test_generic_engine_requires_department(self, catalog):
        with pytest.raises(ValueError):
            DepartmentProgressionEngine(catalog=catalog)

    def test_engine_requires_catalog(self):
        with pytest.raises(ValueError):
            DepartmentProgressionEngine("Finishing")

    def test_generic_department_uses_step_statuses(self, catalog, db_path):
        engine = DepartmentProgressionEngine("finishing", catalog, db_path=db_path)
        assert engine.vocabulary is None
        assert engine.slug == "finishing"
        with pytest.raises(ToolError):
            engine.update_status(1, "On Hold", actor="finisher")
