"""
MCP tool handler for sync_job_status.

Repair path that re-derives a job's canonical status from its step rows,
for jobs whose stored status drifted from their workflow.
"""

from typing import Any, Dict

from pydantic import ValidationError

from db.workflow_store import WorkflowStore
from models.errors import ToolError, create_internal_error
from schemas.job_workflow import SyncJobStatusRequest, SyncJobStatusResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.notifications import ADMIN_ROLE
from workflow.services import get_fanout
from workflow.status_reconciler import sync_job_status_from_workflow


def sync_job_status(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recompute and store a job's canonical status from its workflow.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job to heal
            - actor (str, optional): Who requested the sync
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "job_id": int,
            "previous_status": str,
            "status": str,            # Canonical status after the sync
            "changed": bool,
            "current_department": str | None,
            "current_step": str | None,
            "status_message": str | None
        }

        On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = SyncJobStatusRequest.model_validate(args)

        with WorkflowStore(request.db_path) as store:
            previous = store.get_job(request.job_id)
            status = sync_job_status_from_workflow(store, request.job_id, actor=request.actor)
            job = store.get_job(request.job_id)
            store.commit()

        changed = status.value != previous.status
        if changed:
            get_fanout().emit(
                "workflow:status_synced",
                {
                    "job_id": request.job_id,
                    "previous_status": previous.status,
                    "status": status.value,
                },
                roles=[ADMIN_ROLE],
            )

        return SyncJobStatusResponse(
            job_id=request.job_id,
            previous_status=previous.status,
            status=status.value,
            changed=changed,
            current_department=job.current_department,
            current_step=job.current_step,
            status_message=job.status_message,
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
