"""
MCP tool handler for generate_job_workflow.

Materializes a job's workflow steps from the catalog sequence of its product
type. Calling it again for the same job returns the existing steps unchanged.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.job_workflow import GenerateJobWorkflowRequest
from tools.get_job_workflow import build_job_workflow_response
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_instance


def generate_job_workflow(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Generate the workflow steps for one job.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job to materialize
            - product_id (int, optional): Product whose configuration and optional
              step selections apply; defaults to the job's product
            - actor (str, optional): Who triggered generation
            - db_path (str, optional): Database path override

    Returns:
        The job workflow, shaped as in get_job_workflow. The first eligible
        step is pending and every other step is inactive.

        On error, returns:
        {
            "error": {
                "code": str,         # VALIDATION_ERROR, NOT_FOUND, CONFLICT, DB_NOT_FOUND, ...
                "message": str,
                "retryable": bool
            }
        }
    """
    try:
        request = GenerateJobWorkflowRequest.model_validate(args)
        instance = get_instance(request.db_path)
        instance.generate(request.job_id, product_id=request.product_id, actor=request.actor)
        job, steps = instance.load(request.job_id)
        return build_job_workflow_response(job, steps)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
