"""MCP tool handler for add_department_comment."""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.department_jobs import AddDepartmentCommentRequest, AssignmentResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from workflow.services import get_engine


def add_department_comment(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append a timestamped comment to a job's department assignment.

    Args:
        args: Dictionary containing parameters:
            - job_id (int): Job to comment on
            - department (str): Department name, case-insensitive
            - text (str): Comment text
            - actor (str): Comment author
            - db_path (str, optional): Database path override

    Returns:
        The department assignment row with the appended comment, or
        {"error": {...}} on failure.
    """
    try:
        request = AddDepartmentCommentRequest.model_validate(args)
        engine = get_engine(request.department, request.db_path)
        assignment = engine.add_comment(request.job_id, request.actor, request.text)
        return AssignmentResponse.model_validate(assignment).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
