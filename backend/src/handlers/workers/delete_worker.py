"""
Delete Worker Handler.
DELETE /admin/workers/{workerId}

Releases every task bound to the worker before the account goes away.
"""
from reviewflow.auth import get_user_role, get_user_sub, is_admin
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})
    if not is_admin(event):
        return format_response(403, {'message': 'Admins only'})

    worker_id = get_path_param(event, 'workerId')
    if not worker_id:
        return format_response(400, {'message': 'Missing workerId'})

    try:
        summary = get_service().delete_worker(worker_id, user_id, get_user_role(event))
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting worker {worker_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': 'User deleted successfully', 'deletionSummary': summary})
