"""
Assign Queued Submissions Handler.
POST /admin/submissions/auto-assign

Also runs on an EventBridge schedule to drain the PENDING queue.
"""
from reviewflow.auth import is_admin
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response


def handler(event, context):
    log_event(event)

    # Scheduled invocations carry no authorizer
    if 'requestContext' in event and not is_admin(event):
        return format_response(403, {'message': 'Admins only'})

    try:
        assigned = get_service().assign_queued()
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error assigning queued submissions: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': f'Assigned {assigned} submissions', 'assigned': assigned})
