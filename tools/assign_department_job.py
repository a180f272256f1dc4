"""MCP tool handler for assign_department_job."""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.department_jobs import AssignDepartmentJobRequest, AssignmentResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_engine


def assign_department_job(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Assign a job to an operator and optionally a machine within a department.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job to assign
            - department (str): Department name, case-insensitive
            - assignee (str): Operator receiving the job
            - resource (str, optional): Machine or station
            - comments (str, optional): Assignment comments
            - actor (str): Who made the assignment
            - db_path (str, optional): Database path override

    Returns:
        The department assignment row, or {"error": {...}} on failure.
        Step and canonical job status are not changed.
    """
    try:
        request = AssignDepartmentJobRequest.model_validate(args)
        engine = get_engine(request.department, request.db_path)
        assignment = engine.assign(
            request.job_id,
            request.assignee,
            resource=request.resource,
            actor=request.actor,
            comments=request.comments,
        )
        return AssignmentResponse.model_validate(assignment).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
