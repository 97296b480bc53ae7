"""
Redistribute Tasks Handler.
POST /admin/submissions/redistribute

Rebalances every open submission evenly across the available reviewers.
Returns 409 if another redistribution holds the lock.
"""
from reviewflow.auth import get_user_sub, is_admin
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response


def handler(event, context):
    log_event(event)

    if not get_user_sub(event):
        return format_response(401, {'message': 'Unauthorized'})
    if not is_admin(event):
        return format_response(403, {'message': 'Admins only'})

    try:
        count = get_service().redistribute_all()
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error redistributing tasks: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': f'Redistributed {count} tasks', 'tasksRedistributed': count})
