"""
Tests for the lifecycle history writer.

Covers both historical table shapes, migration of the legacy shape at
bootstrap, and that a failing or missing history table never blocks the
operation being audited.
"""

import logging
import sqlite3
from contextlib import closing

import pytest

from db.audit_writer import (
    SHAPE_CURRENT,
    SHAPE_LEGACY,
    SHAPE_MISSING,
    SHAPE_UNKNOWN,
    AuditLog,
    detect_audit_shape,
)
from db.workflow_store import WorkflowStore
from models.status import JobStatus, StepStatus

from helpers import read_audit, read_job, step_named

LEGACY_TABLE = """
    CREATE TABLE job_lifecycle_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_lifecycle_id INTEGER NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        department TEXT,
        process TEXT,
        changed_by TEXT,
        change_reason TEXT,
        metadata TEXT,
        changed_at TEXT
    )
"""


def run_sql(path, *statements):
    with closing(sqlite3.connect(path)) as conn:
        for statement in statements:
            conn.execute(statement)
        conn.commit()


@pytest.fixture
def legacy_db(tmp_path):
    """Database holding only a legacy-shape history table with one row."""
    path = str(tmp_path / "legacy.db")
    run_sql(
        path,
        LEGACY_TABLE,
        """
        INSERT INTO job_lifecycle_history (
            job_lifecycle_id, from_status, to_status, department, process,
            changed_by, change_reason, changed_at
        )
        VALUES (7, 'pending', 'in_progress', 'Cutting', 'Paper Cutting',
                'cutter', 'Started', '2026-01-05T08:00:00.000Z')
        """,
    )
    return path


class TestShapeDetection:
    def test_current(self, db_path):
        with WorkflowStore(db_path) as store:
            assert detect_audit_shape(store.conn) == SHAPE_CURRENT

    def test_legacy(self, legacy_db):
        with WorkflowStore(legacy_db) as store:
            assert detect_audit_shape(store.conn) == SHAPE_LEGACY

    def test_missing(self, db_path):
        run_sql(db_path, "DROP TABLE job_lifecycle_history")
        with WorkflowStore(db_path) as store:
            assert detect_audit_shape(store.conn) == SHAPE_MISSING

    def test_unknown(self, tmp_path):
        path = str(tmp_path / "odd.db")
        run_sql(path, "CREATE TABLE job_lifecycle_history (id INTEGER, payload TEXT)")
        with WorkflowStore(path) as store:
            assert detect_audit_shape(store.conn) == SHAPE_UNKNOWN


class TestAppend:
    """Writing entries in either shape."""

    def test_current_shape_round_trip(self, db_path):
        with WorkflowStore(db_path) as store:
            audit = AuditLog(store)
            assert audit.append(
                1,
                "Prepress",
                StepStatus.IN_PROGRESS,
                "designer",
                note="Started artwork",
                from_status=StepStatus.PENDING,
                step_name="Design Review",
                status_message="In Progress in Design Review (Prepress)",
            )
            store.commit()

        entries = read_audit(db_path, 1)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.status == "in_progress"
        assert entry.from_status == "pending"
        assert entry.department == "Prepress"
        assert entry.step_name == "Design Review"
        assert entry.actor == "designer"
        assert entry.note == "Started artwork"
        assert entry.created_at.endswith("Z")

    def test_legacy_shape(self, legacy_db):
        with WorkflowStore(legacy_db) as store:
            audit = AuditLog(store)
            assert audit.shape == SHAPE_LEGACY
            assert audit.append(7, "Cutting", "completed", "cutter", step_name="Paper Cutting",
                                from_status="in_progress")
            store.commit()

        with WorkflowStore(legacy_db) as store:
            entries = AuditLog(store).entries(7)
            metadata = store.conn.execute(
                "SELECT metadata FROM job_lifecycle_history ORDER BY id DESC LIMIT 1"
            ).fetchone()[0]

        assert [e.status for e in entries] == ["in_progress", "completed"]
        assert entries[1].note == "Status changed from in_progress to completed"
        assert entries[1].step_name == "Paper Cutting"
        assert '"step_name": "Paper Cutting"' in metadata

    def test_entries_commit_with_transaction(self, db_path):
        with WorkflowStore(db_path) as store:
            AuditLog(store).append(1, "Prepress", "pending", "planner")
            # no commit

        assert read_audit(db_path, 1) == []

    def test_missing_table_is_skipped(self, db_path, caplog):
        run_sql(db_path, "DROP TABLE job_lifecycle_history")

        with caplog.at_level(logging.WARNING):
            with WorkflowStore(db_path) as store:
                audit = AuditLog(store)
                assert audit.append(1, "Prepress", "pending", "planner") is False
                assert audit.entries(1) == []

        assert "skipping history entry" in caplog.text


class TestMigration:
    """Bootstrap moves a legacy history table into the current shape."""

    def test_legacy_rows_are_migrated(self, legacy_db):
        with WorkflowStore(legacy_db, create=True) as store:
            assert detect_audit_shape(store.conn) == SHAPE_CURRENT
            version = store.conn.execute("PRAGMA user_version").fetchone()[0]
            entries = AuditLog(store).entries(7)

        assert version == 2
        assert len(entries) == 1
        entry = entries[0]
        assert entry.job_id == 7
        assert entry.status == "in_progress"
        assert entry.step_name == "Paper Cutting"
        assert entry.actor == "cutter"
        assert entry.note == "Started"
        assert entry.created_at == "2026-01-05T08:00:00.000Z"

    def test_migration_is_idempotent(self, legacy_db):
        for _ in range(2):
            with WorkflowStore(legacy_db, create=True) as store:
                store.commit()

        with WorkflowStore(legacy_db) as store:
            count = store.conn.execute("SELECT COUNT(*) FROM job_lifecycle_history").fetchone()[0]
            tables = {
                row[0]
                for row in store.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }

        assert count == 1
        assert "job_lifecycle_history_legacy" not in tables


class TestBestEffort:
    """Audit failures never block the audited operation."""

    def test_failing_insert_does_not_block_progression(self, make_job, engine_for, db_path, caplog):
        job_id = make_job("Offset")
        engine_for("Prepress").update_status(job_id, "in_progress", actor="designer")
        entries_before = len(read_audit(db_path, job_id))
        run_sql(
            db_path,
            """
            CREATE TRIGGER reject_history BEFORE INSERT ON job_lifecycle_history
            BEGIN
                SELECT RAISE(ABORT, 'history is read-only');
            END
            """,
        )

        with caplog.at_level(logging.WARNING):
            result = engine_for("Prepress").update_status(job_id, "completed", actor="designer")

        assert result["next_step"] == "Plate Making"
        assert step_named(db_path, job_id, "Design Review").status == StepStatus.COMPLETED
        assert step_named(db_path, job_id, "Plate Making").status == StepStatus.PENDING
        assert read_job(db_path, job_id).current_step == "Plate Making"
        assert len(read_audit(db_path, job_id)) == entries_before
        assert "Failed to write audit entry" in caplog.text

    def test_missing_table_does_not_block_completion(self, make_job, engine_for, db_path):
        job_id = make_job("Screen")
        run_sql(db_path, "DROP TABLE job_lifecycle_history")

        for _ in range(3):
            job = read_job(db_path, job_id)
            department = job.current_department or "Production"
            engine_for(department).update_status(job_id, "completed", actor="operator")

        assert read_job(db_path, job_id).status == JobStatus.COMPLETED.value
