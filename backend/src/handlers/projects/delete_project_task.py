"""
Delete Project Task Handler.
DELETE /projects/tasks/{taskId}
"""
from reviewflow.auth import get_user_role, get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'message': 'Missing taskId'})

    try:
        get_service().delete_project_task(task_id, user_id, get_user_role(event))
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting project task {task_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': 'Project task deleted successfully'})
