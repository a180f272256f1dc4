"""
MCP tool handler for update_department_status.

Records a department's progress on a job. Completion values advance the job
to its next eligible step; rejection values send it back to the nearest
completed step for rework.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.department_jobs import DepartmentStatusResponse, UpdateDepartmentStatusRequest
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_engine


def update_department_status(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update the status of a department's current step of a job.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job being reported on
            - department (str): Reporting department, case-insensitive
            - status (str): Department status (e.g. "In Progress", "CTP_COMPLETED")
              or a workflow step status (e.g. "completed")
            - actor (str): Who reported the status
            - note (str, optional): Free-text comment for the audit trail
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "job_id": int,
            "department": str,
            "step_name": str,             # The department's step that was updated
            "sequence_number": int,
            "step_status": str,
            "department_status": str | None,
            "job_status": str,            # Canonical status after the update
            "status_message": str | None,
            "current_step": str | None,
            "current_department": str | None,
            "next_step": str | None,      # Step activated by completion
            "rolled_back_to": str | None, # Step reactivated by rejection
            "job_completed": bool
        }

        On error, returns:
        {
            "error": {
                "code": str,         # VALIDATION_ERROR, NOT_FOUND, NO_ACTIVE_STEP, CONFLICT, ...
                "message": str,
                "retryable": bool    # True for CONFLICT: re-read and retry
            }
        }
    """
    try:
        request = UpdateDepartmentStatusRequest.model_validate(args)
        engine = get_engine(request.department, request.db_path)
        result = engine.update_status(
            request.job_id, request.status, actor=request.actor, note=request.note
        )
        return DepartmentStatusResponse.model_validate(result).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
