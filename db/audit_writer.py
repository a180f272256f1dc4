"""
Append-only lifecycle history writer.

Two historical shapes of ``job_lifecycle_history`` exist: the current one
keyed by ``job_card_id`` and a legacy one keyed by ``job_lifecycle_id``.
The writer probes the table once per store and picks the matching insert.
Insert failures are logged and swallowed so auditing never blocks the
operation that triggered it.
"""

import json
import logging
import sqlite3
from typing import List, Optional

from db.schema import CURRENT_AUDIT_COLUMNS, LEGACY_AUDIT_COLUMNS, table_columns
from db.workflow_store import WorkflowStore, db_value
from models.errors import ToolError
from schemas.workflow import AuditEntry
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

SHAPE_CURRENT = "current"
SHAPE_LEGACY = "legacy"
SHAPE_MISSING = "missing"
SHAPE_UNKNOWN = "unknown"


def detect_audit_shape(conn: sqlite3.Connection) -> str:
    """Classify the lifecycle history table by the columns it carries."""
    columns = set(table_columns(conn, "job_lifecycle_history"))
    if not columns:
        return SHAPE_MISSING
    if CURRENT_AUDIT_COLUMNS.issubset(columns):
        return SHAPE_CURRENT
    if LEGACY_AUDIT_COLUMNS.issubset(columns):
        return SHAPE_LEGACY
    return SHAPE_UNKNOWN


class AuditLog:
    """
    Best-effort transition history bound to an open WorkflowStore.

    Each append runs inside a savepoint of the store's transaction: the
    entry commits together with the transition it describes, and a failed
    insert rolls back only itself.
    """

    def __init__(self, store: WorkflowStore):
        self.store = store
        self._shape: Optional[str] = None

    @property
    def shape(self) -> str:
        if self._shape is None:
            try:
                self._shape = detect_audit_shape(self.store.conn)
            except sqlite3.Error as e:
                logger.warning("Could not inspect audit table: %s", e)
                self._shape = SHAPE_UNKNOWN
        return self._shape

    def append(
        self,
        job_id: int,
        department: Optional[str],
        status: str,
        actor: Optional[str],
        note: Optional[str] = None,
        from_status: Optional[str] = None,
        step_name: Optional[str] = None,
        status_message: Optional[str] = None,
    ) -> bool:
        """
        Record one transition.

        Args:
            job_id: Job the transition belongs to
            department: Department owning the step
            status: New status
            actor: Who caused the transition
            note: Free-text reason
            from_status: Prior status, when known
            step_name: Step the transition applies to
            status_message: Human-readable message shown for the new status

        Returns:
            True if the entry was written, False if it was skipped or failed
        """
        shape = self.shape
        if shape in (SHAPE_MISSING, SHAPE_UNKNOWN):
            logger.warning(
                "Audit table is %s; skipping history entry for job %s (%s)", shape, job_id, db_value(status)
            )
            return False

        timestamp = get_current_utc_timestamp()
        department = db_value(department)
        status = db_value(status)
        from_status = db_value(from_status)

        try:
            with self.store.savepoint("audit_append"):
                if shape == SHAPE_CURRENT:
                    self.store.conn.execute(
                        """
                        INSERT INTO job_lifecycle_history (
                            job_card_id, department, step_name, from_status, status,
                            status_message, updated_by, notes, created_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            job_id,
                            department,
                            step_name,
                            from_status,
                            status,
                            status_message,
                            actor,
                            note,
                            timestamp,
                        ),
                    )
                else:
                    self.store.conn.execute(
                        """
                        INSERT INTO job_lifecycle_history (
                            job_lifecycle_id, from_status, to_status, department, process,
                            changed_by, change_reason, metadata, changed_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            job_id,
                            from_status,
                            status,
                            department,
                            step_name,
                            actor,
                            note or f"Status changed from {from_status} to {status}",
                            json.dumps({"step_name": step_name, "status_message": status_message}),
                            timestamp,
                        ),
                    )
            return True

        except (sqlite3.Error, ToolError) as e:
            logger.warning("Failed to write audit entry for job %s (%s): %s", job_id, status, e)
            return False

    def entries(self, job_id: int) -> List[AuditEntry]:
        """Read a job's history oldest first, whichever shape the table has."""
        shape = self.shape
        if shape == SHAPE_CURRENT:
            query = """
                SELECT job_card_id AS job_id, department, step_name, from_status, status,
                       updated_by AS actor, notes AS note, created_at
                FROM job_lifecycle_history WHERE job_card_id = ? ORDER BY rowid
            """
        elif shape == SHAPE_LEGACY:
            query = """
                SELECT job_lifecycle_id AS job_id, department, process AS step_name,
                       from_status, to_status AS status, changed_by AS actor,
                       change_reason AS note, changed_at AS created_at
                FROM job_lifecycle_history WHERE job_lifecycle_id = ? ORDER BY rowid
            """
        else:
            return []

        rows = self.store.conn.execute(query, (job_id,)).fetchall()
        return [AuditEntry.model_validate(dict(row)) for row in rows]
