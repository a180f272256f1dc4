"""
Database path resolution, schema bootstrap and audit table migration.

The job card database holds products, jobs, materialized workflow steps,
department assignments and the lifecycle history (audit) table.
"""

import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

from models.errors import ToolError, create_db_error

logger = logging.getLogger(__name__)

# Default database path relative to repository root
DEFAULT_DB_PATH = "data/jobcards.db"

SCHEMA_VERSION = 2

# Column sets identifying the two historical audit table shapes
CURRENT_AUDIT_COLUMNS = {"job_card_id", "department", "status"}
LEGACY_AUDIT_COLUMNS = {"job_lifecycle_id", "to_status"}

_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        product_type TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_step_selections (
        product_id INTEGER NOT NULL REFERENCES products(id),
        step_name TEXT NOT NULL,
        is_selected INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (product_id, step_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_number TEXT UNIQUE,
        product_id INTEGER REFERENCES products(id),
        product_type TEXT,
        quantity INTEGER,
        priority TEXT,
        due_date TEXT,
        current_department TEXT,
        current_step TEXT,
        status TEXT NOT NULL DEFAULT 'PENDING',
        workflow_status TEXT,
        status_message TEXT,
        last_updated_by TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_workflow_steps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id INTEGER NOT NULL REFERENCES jobs(id),
        sequence_number INTEGER NOT NULL,
        step_name TEXT NOT NULL,
        department TEXT NOT NULL,
        is_compulsory INTEGER NOT NULL DEFAULT 1,
        is_selected INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'inactive',
        status_message TEXT,
        assigned_to TEXT,
        activated_at TEXT,
        completed_at TEXT,
        updated_by TEXT,
        updated_at TEXT,
        version INTEGER NOT NULL DEFAULT 0,
        UNIQUE (job_id, sequence_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS department_assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id INTEGER NOT NULL REFERENCES jobs(id),
        department TEXT NOT NULL,
        assigned_to TEXT,
        resource TEXT,
        assigned_by TEXT,
        status TEXT NOT NULL,
        comments TEXT,
        started_at TEXT,
        finished_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (job_id, department)
    )
    """,
]

_AUDIT_TABLE = """
    CREATE TABLE IF NOT EXISTS job_lifecycle_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_card_id INTEGER NOT NULL,
        department TEXT,
        step_name TEXT,
        from_status TEXT,
        status TEXT NOT NULL,
        status_message TEXT,
        updated_by TEXT,
        notes TEXT,
        created_at TEXT NOT NULL
    )
"""

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_steps_job ON job_workflow_steps(job_id, sequence_number)",
    "CREATE INDEX IF NOT EXISTS idx_steps_department_status ON job_workflow_steps(department, status)",
    "CREATE INDEX IF NOT EXISTS idx_history_job ON job_lifecycle_history(job_card_id)",
]


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """
    Resolve the database path with support for overrides and defaults.

    Resolution order:
    1. Provided db_path parameter
    2. JOBCARD_DB environment variable
    3. JOBCARD_ROOT/data/jobcards.db
    4. Default path: data/jobcards.db

    Args:
        db_path: Optional database path override

    Returns:
        Resolved absolute Path to the database
    """
    if db_path is not None:
        path_str = db_path
    else:
        db_env = os.getenv("JOBCARD_DB")
        if db_env:
            path_str = db_env
        else:
            root_env = os.getenv("JOBCARD_ROOT")
            if root_env:
                return Path(root_env) / "data" / "jobcards.db"
            path_str = DEFAULT_DB_PATH

    path = Path(path_str)

    # Relative paths resolve from the repository root (db/ -> repo/)
    if not path.is_absolute():
        repo_root = Path(__file__).resolve().parents[1]
        path = repo_root / path

    return path


def ensure_parent_dirs(db_path: Path) -> None:
    """
    Ensure parent directories exist for the database file.

    Raises:
        ToolError: If directory creation fails
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise create_db_error(
            f"Failed to create parent directories: {str(e)}", retryable=False, original_error=e
        ) from e


def table_columns(conn: sqlite3.Connection, table: str) -> List[str]:
    """Return the column names of a table, empty when the table does not exist."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return [row[1] for row in cursor.fetchall()]


def migrate_audit_table(conn: sqlite3.Connection) -> bool:
    """
    Move a legacy-shape lifecycle history table into the current shape.

    Legacy rows keep their identity and timestamps; ``job_lifecycle_id``
    becomes ``job_card_id``, ``to_status`` becomes ``status``,
    ``changed_by`` becomes ``updated_by``, ``change_reason`` becomes
    ``notes`` and ``process`` becomes ``step_name``. Sets the schema
    version once the table is current.

    Returns:
        True when rows were migrated, False when nothing needed migrating

    Raises:
        ToolError: If the migration fails (the caller's transaction is rolled back)
    """
    try:
        columns = set(table_columns(conn, "job_lifecycle_history"))
        if not LEGACY_AUDIT_COLUMNS.issubset(columns):
            conn.execute(_AUDIT_TABLE)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            return False

        conn.execute("ALTER TABLE job_lifecycle_history RENAME TO job_lifecycle_history_legacy")
        conn.execute(_AUDIT_TABLE)
        conn.execute(
            """
            INSERT INTO job_lifecycle_history (
                id, job_card_id, department, step_name, from_status, status,
                updated_by, notes, created_at
            )
            SELECT id, job_lifecycle_id, department, process, from_status, to_status,
                   changed_by, change_reason,
                   COALESCE(changed_at, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            FROM job_lifecycle_history_legacy
            """
        )
        migrated = conn.execute("SELECT COUNT(*) FROM job_lifecycle_history").fetchone()[0]
        conn.execute("DROP TABLE job_lifecycle_history_legacy")
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        logger.info("Migrated %d legacy audit rows to the current history schema", migrated)
        return True

    except sqlite3.Error as e:
        raise create_db_error(
            f"Failed to migrate audit table: {str(e)}", retryable=False, original_error=e
        ) from e


def bootstrap_schema(conn: sqlite3.Connection) -> None:
    """
    Bootstrap all workflow tables and indexes if they don't exist.

    Migrates a legacy audit table in place. This operation is idempotent:
    safe to call on existing databases.

    Raises:
        ToolError: If schema creation fails
    """
    try:
        # DDL runs in autocommit mode unless a transaction is opened explicitly
        if not conn.in_transaction:
            conn.execute("BEGIN")
        for statement in _TABLES:
            conn.execute(statement)
        migrate_audit_table(conn)
        for statement in _INDEXES:
            conn.execute(statement)
        conn.commit()

    except sqlite3.Error as e:
        conn.rollback()
        raise create_db_error(
            f"Failed to bootstrap schema: {str(e)}", retryable=False, original_error=e
        ) from e
    except ToolError:
        conn.rollback()
        raise
