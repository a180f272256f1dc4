"""
MCP tool handler for get_job_workflow.

Read-only view of a job's canonical status and its materialized workflow
steps in sequence order.
"""

from typing import Any, Dict, List

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.job_workflow import GetJobWorkflowRequest, JobWorkflowResponse
from schemas.workflow import Job, JobWorkflowStep
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_instance

STEP_RESPONSE_EXCLUDE = {"id", "job_id", "updated_at"}


def build_job_workflow_response(job: Job, steps: List[JobWorkflowStep]) -> Dict[str, Any]:
    """Serialize a job and its steps into the tool response shape."""
    return JobWorkflowResponse(
        job_id=job.id,
        job_number=job.job_number,
        product_type=job.product_type,
        status=job.status,
        current_department=job.current_department,
        current_step=job.current_step,
        workflow_status=job.workflow_status,
        status_message=job.status_message,
        steps=[step.model_dump(mode="json", exclude=STEP_RESPONSE_EXCLUDE) for step in steps],
    ).model_dump()


def get_job_workflow(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a job's workflow.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job to read
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "job_id": int,
            "job_number": str | None,
            "product_type": str | None,
            "status": str,                 # Canonical job status
            "current_department": str | None,
            "current_step": str | None,
            "workflow_status": str | None,
            "status_message": str | None,
            "steps": [ { "sequence_number", "step_name", "department", "status", ... } ]
        }

        A job whose workflow has not been generated yet returns an empty
        ``steps`` list. On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = GetJobWorkflowRequest.model_validate(args)
        job, steps = get_instance(request.db_path).load(request.job_id)
        return build_job_workflow_response(job, steps)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
