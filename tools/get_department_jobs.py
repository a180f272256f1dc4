"""
MCP tool handler for get_department_jobs.

Read-only department queue: jobs whose current step belongs to the
department, with the step and assignment fields an operator needs.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.department_jobs import GetDepartmentJobsRequest, GetDepartmentJobsResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_engine


def get_department_jobs(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    List a department's current jobs.

    Args:
        args: Dictionary containing parameters:
            - department (str): Department name, case-insensitive
            - status (str, optional): Step status or department status filter
            - assigned_to (str, optional): Operator filter
            - priority (str, optional): Priority filter, case-insensitive
            - due_from / due_to (str, optional): Inclusive due date range
            - limit (int, optional): Maximum rows, 1-500
            - db_path (str, optional): Database path override

    Returns:
        Dictionary with structure:
        {
            "department": str,
            "count": int,
            "jobs": [ { "job_id", "job_number", "step_name", "step_status", "assigned_to", ... } ]
        }

        Jobs are ordered by due date (undated last), then priority, then
        newest first. On error, returns {"error": {"code", "message", "retryable"}}.
    """
    try:
        request = GetDepartmentJobsRequest.model_validate(args)
        engine = get_engine(request.department, request.db_path)
        jobs = engine.get_department_jobs(request.filters())

        return GetDepartmentJobsResponse(
            department=engine.department.value, count=len(jobs), jobs=jobs
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
