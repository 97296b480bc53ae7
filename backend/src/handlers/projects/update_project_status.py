"""
Update Project Status Handler.
PUT /projects/tasks/{taskId}/status

One endpoint for every tester, reviewer and admin outcome. The body names
the destination status plus whatever that move requires.
"""
from reviewflow.auth import get_user_role, get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param, parse_body

# camelCase request keys -> transition extra fields
EXTRA_FIELDS = {
    'feedback': 'feedback',
    'rejectionReason': 'rejection_reason',
    'taskLink': 'task_link',
    'submittedAccount': 'submitted_account',
    'taskLinkSubmitted': 'task_link_submitted',
    'accountPostedIn': 'account_posted_in',
}


def handler(event, context):
    """
    Body:
        status: Destination status (required)
        feedback, rejectionReason, taskLink, submittedAccount,
        taskLinkSubmitted, accountPostedIn: as the destination requires
    """
    log_event(event)

    user_id = get_user_sub(event)
    role = get_user_role(event)
    if not user_id or role is None:
        return format_response(401, {'message': 'Unauthorized'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'message': 'Missing taskId'})

    body = parse_body(event)
    status = body.get('status')
    if not status:
        return format_response(400, {'message': 'Missing status'})
    extra = {field: body[key] for key, field in EXTRA_FIELDS.items() if body.get(key)}

    try:
        task = get_service().transition_project(task_id, status, role, user_id, extra)
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating project task {task_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': 'Status updated successfully', 'task': task.to_item()})
