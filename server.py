#!/usr/bin/env python3
"""
MCP Server entry point for the job card workflow tools.

Exposes job workflow generation, department status progression, assignment
and status reconciliation to agents and operator front-ends via the Model
Context Protocol.

Usage:
    python server.py

The server runs in stdio mode by default, which is the standard transport
for MCP servers that are invoked by LLM agents.
"""

import logging

from mcp.server.fastmcp import FastMCP

from config import get_config
from tools.add_department_comment import add_department_comment
from tools.assign_department_job import assign_department_job
from tools.generate_job_workflow import generate_job_workflow
from tools.get_department_jobs import get_department_jobs
from tools.get_job_workflow import get_job_workflow
from tools.sync_job_status import sync_job_status
from tools.update_department_status import update_department_status
from workflow.services import reset_services

# Create FastMCP server instance
config = get_config()
mcp = FastMCP(
    name=config.server_name,
    instructions=(
        "This server runs the job card department workflow of a print and packaging plant. "
        "\n\n"
        "WORKFLOW TOOLS:\n"
        "Use generate_job_workflow to materialize a job's ordered steps from its product type. "
        "Use get_job_workflow to read a job's canonical status and its steps. "
        "Use sync_job_status to re-derive a job's canonical status from its steps when they disagree."
        "\n\n"
        "DEPARTMENT TOOLS:\n"
        "Use get_department_jobs to list the jobs currently waiting in or worked on by a department. "
        "Use update_department_status to report progress; completion advances the job to its next "
        "step and rejection sends it back to the last completed step. "
        "Use assign_department_job to bind a job to an operator and machine. "
        "Use add_department_comment to leave a note on a job's department assignment. "
        "A CONFLICT error means another operator changed the step first: re-read and retry."
    ),
)


@mcp.tool(
    name="generate_job_workflow",
    description=(
        "Generate a job's workflow steps from the catalog sequence of its product type, "
        "honouring the product's optional step selections. Idempotent."
    ),
)
def generate_job_workflow_tool(
    job_id: int,
    product_id: int | None = None,
    actor: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Generate a job's workflow steps.

    Args:
        job_id: Job to materialize.
        product_id: Product configuration to apply (default: the job's product).
        actor: Who triggered generation.
        db_path: Optional SQLite path override.

    Returns:
        The job workflow with its steps, or {"error": {...}}.
    """
    args = {"job_id": job_id}

    if product_id is not None:
        args["product_id"] = product_id
    if actor is not None:
        args["actor"] = actor
    if db_path is not None:
        args["db_path"] = db_path

    return generate_job_workflow(args)


@mcp.tool(
    name="get_job_workflow",
    description="Read a job's canonical status and its workflow steps in sequence order.",
)
def get_job_workflow_tool(job_id: int, db_path: str | None = None) -> dict:
    """
    Read a job's workflow.

    Args:
        job_id: Job to read.
        db_path: Optional SQLite path override.

    Returns:
        The job workflow with its steps, or {"error": {...}}.
    """
    args = {"job_id": job_id}

    if db_path is not None:
        args["db_path"] = db_path

    return get_job_workflow(args)


@mcp.tool(
    name="get_department_jobs",
    description=(
        "List jobs whose current step belongs to a department, with optional status, "
        "assignee, priority and due date filters."
    ),
)
def get_department_jobs_tool(
    department: str,
    status: str | None = None,
    assigned_to: str | None = None,
    priority: str | None = None,
    due_from: str | None = None,
    due_to: str | None = None,
    limit: int | None = None,
    db_path: str | None = None,
) -> dict:
    """
    List a department's current jobs.

    Args:
        department: Department name, e.g. 'Cutting' or 'offset_printing'.
        status: Step status or department status filter.
        assigned_to: Operator filter.
        priority: Priority filter (e.g. 'urgent', 'high').
        due_from: Earliest due date, inclusive.
        due_to: Latest due date, inclusive.
        limit: Maximum rows, 1-500.
        db_path: Optional SQLite path override.

    Returns:
        {"department", "count", "jobs"} or {"error": {...}}.
    """
    args = {"department": department}

    if status is not None:
        args["status"] = status
    if assigned_to is not None:
        args["assigned_to"] = assigned_to
    if priority is not None:
        args["priority"] = priority
    if due_from is not None:
        args["due_from"] = due_from
    if due_to is not None:
        args["due_to"] = due_to
    if limit is not None:
        args["limit"] = limit
    if db_path is not None:
        args["db_path"] = db_path

    return get_department_jobs(args)


@mcp.tool(
    name="update_department_status",
    description=(
        "Report a department's status for a job. Completion advances the job to its next "
        "eligible step; rejection returns it to the nearest completed step for rework."
    ),
)
def update_department_status_tool(
    job_id: int,
    department: str,
    status: str,
    actor: str,
    note: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Update a department's step of a job.

    Args:
        job_id: Job being reported on.
        department: Reporting department.
        status: Department status (e.g. 'In Progress', 'CTP_COMPLETED') or step status.
        actor: Who reported the status.
        note: Optional comment for the audit trail.
        db_path: Optional SQLite path override.

    Returns:
        Step and job summary after the update, or {"error": {...}}.
    """
    args = {"job_id": job_id, "department": department, "status": status, "actor": actor}

    if note is not None:
        args["note"] = note
    if db_path is not None:
        args["db_path"] = db_path

    return update_department_status(args)


@mcp.tool(
    name="assign_department_job",
    description="Assign a job to an operator and optionally a machine within a department.",
)
def assign_department_job_tool(
    job_id: int,
    department: str,
    assignee: str,
    actor: str,
    resource: str | None = None,
    comments: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Assign a department job.

    Args:
        job_id: Job to assign.
        department: Department name.
        assignee: Operator receiving the job.
        actor: Who made the assignment.
        resource: Machine or station.
        comments: Assignment comments.
        db_path: Optional SQLite path override.

    Returns:
        The assignment row, or {"error": {...}}.
    """
    args = {"job_id": job_id, "department": department, "assignee": assignee, "actor": actor}

    if resource is not None:
        args["resource"] = resource
    if comments is not None:
        args["comments"] = comments
    if db_path is not None:
        args["db_path"] = db_path

    return assign_department_job(args)


@mcp.tool(
    name="add_department_comment",
    description="Append a timestamped comment to a job's assignment in a department.",
)
def add_department_comment_tool(
    job_id: int,
    department: str,
    text: str,
    actor: str,
    db_path: str | None = None,
) -> dict:
    """
    Comment on a department job.

    Args:
        job_id: Job to comment on.
        department: Department name.
        text: Comment text.
        actor: Comment author.
        db_path: Optional SQLite path override.

    Returns:
        The assignment row, or {"error": {...}}.
    """
    args = {"job_id": job_id, "department": department, "text": text, "actor": actor}

    if db_path is not None:
        args["db_path"] = db_path

    return add_department_comment(args)


@mcp.tool(
    name="sync_job_status",
    description=(
        "Re-derive a job's canonical status from its workflow steps. "
        "Use when the stored status disagrees with the steps."
    ),
)
def sync_job_status_tool(
    job_id: int,
    actor: str | None = None,
    db_path: str | None = None,
) -> dict:
    """
    Heal a job's canonical status.

    Args:
        job_id: Job to heal.
        actor: Who requested the sync.
        db_path: Optional SQLite path override.

    Returns:
        {"job_id", "previous_status", "status", "changed", ...} or {"error": {...}}.
    """
    args = {"job_id": job_id}

    if actor is not None:
        args["actor"] = actor
    if db_path is not None:
        args["db_path"] = db_path

    return sync_job_status(args)


def main():
    """
    Main entry point for the MCP server.

    Runs the server in stdio mode, which is the standard transport
    for MCP servers that are invoked by LLM agents.
    """
    # Load and setup configuration
    config.setup_logging()

    # Log startup information
    logger = logging.getLogger(__name__)
    logger.info("Starting job card workflow MCP server")
    logger.info(f"Server name: {config.server_name}")
    logger.info(f"Database path: {config.db_path}")

    # Validate configuration and log warnings
    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    # Start the server
    logger.info("Server starting in stdio mode")
    try:
        mcp.run(transport="stdio")
    finally:
        reset_services()


if __name__ == "__main__":
    main()
