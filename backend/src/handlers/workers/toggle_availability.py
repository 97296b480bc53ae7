"""
Toggle Availability Handler.
POST /admin/workers/{workerId}/availability

Flips a tester's or reviewer's green light. Turning it on rebalances the
backlog onto the newly available worker.
"""
from reviewflow.auth import get_user_role, get_user_sub, is_admin
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param, parse_body


def handler(event, context):
    """
    Body (optional):
        available: Explicit target state; omitted means toggle
    """
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})
    if not is_admin(event):
        return format_response(403, {'message': 'Admins only'})

    worker_id = get_path_param(event, 'workerId')
    if not worker_id:
        return format_response(400, {'message': 'Missing workerId'})

    body = parse_body(event)
    service = get_service()

    try:
        if 'available' in body:
            result = service.set_availability(worker_id, bool(body['available']), user_id, get_user_role(event))
        else:
            result = service.toggle_availability(worker_id, user_id, get_user_role(event))
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error toggling availability for {worker_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {
        'message': 'Green light toggled successfully',
        'available': result['worker'].available,
        'tasksRedistributed': result['tasksRedistributed'],
    })
