"""
Transactional row access for the workflow engine.

One ``WorkflowStore`` wraps one SQLite connection and one transaction, so a
progression operation (step writes, canonical status write and audit append)
commits or rolls back as a unit.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from db.schema import bootstrap_schema, ensure_parent_dirs, resolve_db_path
from models.errors import (
    ConcurrentUpdateError,
    NotFoundError,
    create_db_error,
    create_db_not_found_error,
)
from models.status import ACTIVE_STEP_STATUSES
from schemas.workflow import DepartmentAssignment, Job, JobWorkflowStep

logger = logging.getLogger(__name__)

STEP_UPDATABLE_COLUMNS = frozenset(
    {"status", "status_message", "assigned_to", "activated_at", "completed_at", "updated_by"}
)

JOB_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "current_department",
        "current_step",
        "workflow_status",
        "status_message",
        "last_updated_by",
    }
)

_PRIORITY_ORDER = """
    CASE LOWER(COALESCE(j.priority, ''))
        WHEN 'urgent' THEN 0
        WHEN 'high' THEN 1
        WHEN 'medium' THEN 2
        WHEN 'normal' THEN 2
        WHEN 'low' THEN 3
        ELSE 4
    END
"""


class WorkflowStore:
    """
    Context manager for workflow reads and writes on the job card database.

    Provides transaction management with automatic rollback on exceptions
    and guaranteed connection cleanup.

    Usage:
        with WorkflowStore(db_path) as store:
            steps = store.list_steps(job_id)
            store.update_step(steps[0], timestamp, status=StepStatus.IN_PROGRESS)
            store.commit()
    """

    def __init__(self, db_path: Optional[str] = None, create: bool = False):
        """
        Initialize store with database path.

        Args:
            db_path: Optional database path override
            create: Create the file and bootstrap the schema when missing
        """
        self.db_path = db_path
        self.create = create
        self.resolved_path: Optional[Path] = None
        self.conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False

    def __enter__(self):
        """
        Open connection and begin transaction.

        Raises:
            ToolError: If database file doesn't exist or connection fails
        """
        self.resolved_path = resolve_db_path(self.db_path)

        if self.create:
            ensure_parent_dirs(self.resolved_path)
        elif not self.resolved_path.is_file():
            raise create_db_not_found_error(str(self.resolved_path))

        try:
            self.conn = sqlite3.connect(str(self.resolved_path))
            self.conn.row_factory = sqlite3.Row

            if self.create:
                bootstrap_schema(self.conn)

            self.conn.execute("BEGIN")
            self._in_transaction = True
            return self

        except sqlite3.OperationalError as e:
            self._close()
            if "unable to open database" in str(e).lower():
                raise create_db_not_found_error(str(self.resolved_path)) from e
            raise create_db_error(str(e), retryable=True, original_error=e) from e

        except sqlite3.Error as e:
            self._close()
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        except Exception:
            self._close()
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Rollback anything not committed, close connection always."""
        try:
            # Uncommitted work is discarded
            if self._in_transaction:
                self.rollback()
        finally:
            self._close()

        # Don't suppress exceptions
        return False

    def _close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise create_db_error("Connection not established", retryable=False)
        return self.conn

    def _execute(self, query: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        conn = self._require_conn()
        try:
            return conn.execute(query, tuple(params))
        except sqlite3.OperationalError as e:
            # "database is locked" and friends clear up on retry
            raise create_db_error(str(e), retryable=True, original_error=e) from e
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def commit(self) -> None:
        """
        Commit the transaction and start a new one.

        Raises:
            ToolError: If commit fails
        """
        conn = self._require_conn()
        if not self._in_transaction:
            return

        try:
            conn.commit()
            self._in_transaction = False
            conn.execute("BEGIN")
            self._in_transaction = True
        except sqlite3.Error as e:
            raise create_db_error(
                f"Failed to commit transaction: {str(e)}", retryable=True, original_error=e
            ) from e

    def rollback(self) -> None:
        """
        Rollback the transaction.

        Does not raise: rollback runs during error handling and must not mask
        the original exception.
        """
        if self.conn is None or not self._in_transaction:
            return

        try:
            self.conn.rollback()
        except sqlite3.Error as e:
            logger.warning("Rollback failed: %s", e)
        finally:
            self._in_transaction = False

    @contextmanager
    def savepoint(self, name: str):
        """
        Run a block inside a SAVEPOINT.

        A failure inside the block undoes only the block's writes; the
        exception is re-raised for the caller to handle.
        """
        conn = self._require_conn()
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")

    # ------------------------------------------------------------------
    # Products and jobs
    # ------------------------------------------------------------------

    def insert_product(self, name: str, product_type: str) -> int:
        cursor = self._execute(
            "INSERT INTO products (name, product_type) VALUES (?, ?)", (name, product_type)
        )
        return cursor.lastrowid

    def set_step_selection(self, product_id: int, step_name: str, selected: bool = True) -> None:
        """Record whether an optional step is selected for a product configuration."""
        self._execute(
            """
            INSERT INTO product_step_selections (product_id, step_name, is_selected)
            VALUES (?, ?, ?)
            ON CONFLICT (product_id, step_name) DO UPDATE SET is_selected = excluded.is_selected
            """,
            (product_id, step_name, 1 if selected else 0),
        )

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        row = self._execute(
            "SELECT id, name, product_type FROM products WHERE id = ?", (product_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_selected_steps(self, product_id: Optional[int]) -> Set[str]:
        """Return names of optional steps explicitly selected for a product."""
        if product_id is None:
            return set()
        rows = self._execute(
            "SELECT step_name FROM product_step_selections WHERE product_id = ? AND is_selected = 1",
            (product_id,),
        ).fetchall()
        return {row["step_name"] for row in rows}

    def insert_job(
        self,
        job_number: Optional[str] = None,
        product_id: Optional[int] = None,
        product_type: Optional[str] = None,
        quantity: Optional[int] = None,
        priority: Optional[str] = None,
        due_date: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        """Insert a newly punched job in PENDING status and return its id."""
        if created_at is None:
            cursor = self._execute(
                """
                INSERT INTO jobs (job_number, product_id, product_type, quantity, priority, due_date)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_number, product_id, product_type, quantity, priority, due_date),
            )
        else:
            cursor = self._execute(
                """
                INSERT INTO jobs (
                    job_number, product_id, product_type, quantity, priority, due_date, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (job_number, product_id, product_type, quantity, priority, due_date, created_at),
            )
        return cursor.lastrowid

    def get_job(self, job_id: int) -> Job:
        """
        Fetch a job by id.

        Raises:
            NotFoundError: If no job has this id
        """
        row = self._execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Job {job_id} does not exist")
        return Job.model_validate(dict(row))

    def update_job(self, job_id: int, timestamp: str, **changes: Any) -> None:
        """
        Write canonical job fields in one UPDATE.

        Raises:
            NotFoundError: If no job has this id
        """
        unknown = set(changes) - JOB_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported job columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in changes] + ["updated_at = ?"]
        params = [db_value(value) for value in changes.values()] + [timestamp, job_id]
        cursor = self._execute(
            f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?", params
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Job {job_id} does not exist")

    # ------------------------------------------------------------------
    # Workflow steps
    # ------------------------------------------------------------------

    def list_steps(self, job_id: int) -> List[JobWorkflowStep]:
        rows = self._execute(
            "SELECT * FROM job_workflow_steps WHERE job_id = ? ORDER BY sequence_number",
            (job_id,),
        ).fetchall()
        return [JobWorkflowStep.model_validate(dict(row)) for row in rows]

    def insert_steps(self, job_id: int, steps: List[Dict[str, Any]], timestamp: str) -> None:
        """Insert materialized step rows for a job."""
        self._require_conn()
        try:
            self.conn.executemany(
                """
                INSERT INTO job_workflow_steps (
                    job_id, sequence_number, step_name, department, is_compulsory,
                    is_selected, status, status_message, activated_at, updated_by, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        job_id,
                        step["sequence_number"],
                        step["step_name"],
                        db_value(step["department"]),
                        1 if step["is_compulsory"] else 0,
                        1 if step["is_selected"] else 0,
                        db_value(step["status"]),
                        step.get("status_message"),
                        step.get("activated_at"),
                        step.get("updated_by"),
                        timestamp,
                    )
                    for step in steps
                ],
            )
        except sqlite3.IntegrityError as e:
            # Another writer materialized the same job first
            raise ConcurrentUpdateError(job_id, steps[0]["sequence_number"] if steps else 0) from e
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def update_step(self, step: JobWorkflowStep, timestamp: str, **changes: Any) -> JobWorkflowStep:
        """
        Compare-and-swap update of one step row.

        The write only applies when the row still carries the version that
        was read; the version is incremented on success.

        Returns:
            The step with the changes applied

        Raises:
            ConcurrentUpdateError: If the row changed since it was read
        """
        unknown = set(changes) - STEP_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported step columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in changes]
        assignments += ["updated_at = ?", "version = version + 1"]
        params = [db_value(value) for value in changes.values()]
        params += [timestamp, step.id, step.version]

        cursor = self._execute(
            f"UPDATE job_workflow_steps SET {', '.join(assignments)} WHERE id = ? AND version = ?",
            params,
        )
        if cursor.rowcount == 0:
            raise ConcurrentUpdateError(step.job_id, step.sequence_number)

        return JobWorkflowStep.model_validate(
            {**step.model_dump(), **changes, "updated_at": timestamp, "version": step.version + 1}
        )

    # ------------------------------------------------------------------
    # Department assignments
    # ------------------------------------------------------------------

    def get_assignment(self, job_id: int, department: str) -> Optional[DepartmentAssignment]:
        row = self._execute(
            "SELECT * FROM department_assignments WHERE job_id = ? AND department = ?",
            (job_id, db_value(department)),
        ).fetchone()
        return DepartmentAssignment.model_validate(dict(row)) if row else None

    def upsert_assignment(
        self,
        job_id: int,
        department: str,
        status: str,
        timestamp: str,
        assigned_to: Optional[str] = None,
        resource: Optional[str] = None,
        assigned_by: Optional[str] = None,
        comments: Optional[str] = None,
        started_at: Optional[str] = None,
        finished_at: Optional[str] = None,
    ) -> DepartmentAssignment:
        """
        Insert or update the single assignment row for (job, department).

        ``None`` arguments keep the stored value; ``started_at`` is only
        written once.
        """
        self._execute(
            """
            INSERT INTO department_assignments (
                job_id, department, assigned_to, resource, assigned_by, status, comments,
                started_at, finished_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (job_id, department) DO UPDATE SET
                assigned_to = COALESCE(excluded.assigned_to, assigned_to),
                resource = COALESCE(excluded.resource, resource),
                assigned_by = COALESCE(excluded.assigned_by, assigned_by),
                status = excluded.status,
                comments = COALESCE(excluded.comments, comments),
                started_at = COALESCE(started_at, excluded.started_at),
                finished_at = COALESCE(excluded.finished_at, finished_at),
                updated_at = excluded.updated_at
            """,
            (
                job_id,
                db_value(department),
                assigned_to,
                resource,
                assigned_by,
                db_value(status),
                comments,
                started_at,
                finished_at,
                timestamp,
                timestamp,
            ),
        )
        return self.get_assignment(job_id, department)

    def append_assignment_comment(
        self, job_id: int, department: str, line: str, timestamp: str
    ) -> DepartmentAssignment:
        """Append one line to the assignment's comment log."""
        cursor = self._execute(
            """
            UPDATE department_assignments
            SET comments = CASE
                    WHEN comments IS NULL OR comments = '' THEN ?
                    ELSE comments || char(10) || ?
                END,
                updated_at = ?
            WHERE job_id = ? AND department = ?
            """,
            (line, line, timestamp, job_id, db_value(department)),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"No {db_value(department)} assignment for job {job_id}")
        return self.get_assignment(job_id, department)

    # ------------------------------------------------------------------
    # Department queue
    # ------------------------------------------------------------------

    def query_department_jobs(
        self,
        department: str,
        status: Optional[str] = None,
        department_status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        priority: Optional[str] = None,
        due_from: Optional[str] = None,
        due_to: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        List jobs whose current step belongs to the department.

        ``status`` filters on the step status, ``department_status`` on the
        department value recorded on the assignment row. Ordered by due date
        (undated last), priority (urgent first), then newest job first.
        """
        active = sorted(s.value for s in ACTIVE_STEP_STATUSES)
        placeholders = ",".join("?" * len(active))
        query = f"""
            SELECT
                j.id AS job_id,
                j.job_number,
                j.product_type,
                j.quantity,
                j.priority,
                j.due_date,
                j.status AS job_status,
                j.status_message,
                j.created_at,
                s.sequence_number,
                s.step_name,
                s.status AS step_status,
                s.activated_at,
                COALESCE(a.assigned_to, s.assigned_to) AS assigned_to,
                a.resource,
                a.status AS assignment_status,
                a.comments
            FROM job_workflow_steps s
            JOIN jobs j ON j.id = s.job_id
            LEFT JOIN department_assignments a
                ON a.job_id = s.job_id AND a.department = s.department
            WHERE s.department = ? AND s.status IN ({placeholders})
        """
        params: List[Any] = [db_value(department), *active]

        if status is not None:
            query += " AND s.status = ?"
            params.append(status)
        if department_status is not None:
            query += " AND a.status = ?"
            params.append(department_status)
        if assigned_to is not None:
            query += " AND COALESCE(a.assigned_to, s.assigned_to) = ?"
            params.append(assigned_to)
        if priority is not None:
            query += " AND LOWER(j.priority) = LOWER(?)"
            params.append(priority)
        if due_from is not None:
            query += " AND j.due_date >= ?"
            params.append(due_from)
        if due_to is not None:
            query += " AND j.due_date <= ?"
            params.append(due_to)

        query += f" ORDER BY j.due_date IS NULL, j.due_date, {_PRIORITY_ORDER}, j.created_at DESC, j.id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        return [dict(row) for row in self._execute(query, params).fetchall()]


def db_value(value: Any) -> Any:
    """Unwrap str Enums so SQLite stores their value."""
    return getattr(value, "value", value)
