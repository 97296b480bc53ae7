"""
Reassign Pending Project Tasks Handler.
POST /admin/projects/reassign-pending

Binds a tester to every TASK_SUBMITTED project task still waiting for one.
Also runs on an EventBridge schedule.
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
        assigned = get_service().assign_queued_projects()
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error reassigning pending project tasks: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': f'Assigned {assigned} project tasks', 'assigned': assigned})
