"""
Resubmit Project Task Handler.
PUT /projects/tasks/{taskId}/resubmit

The contributor addresses tester or reviewer feedback, optionally editing
the task, and sends it back.
"""
from reviewflow.auth import get_user_role, get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param, parse_body

UPDATABLE_FIELDS = {
    'title': 'title',
    'language': 'language',
    'category': 'category',
    'difficulty': 'difficulty',
    'description': 'description',
    'githubRepo': 'github_repo',
    'commitHash': 'commit_hash',
    'issueUrl': 'issue_url',
}


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    role = get_user_role(event)
    if not user_id or role is None:
        return format_response(401, {'message': 'Unauthorized'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'message': 'Missing taskId'})

    body = parse_body(event)
    updates = {field: body[key] for key, field in UPDATABLE_FIELDS.items() if body.get(key)}

    try:
        task = get_service().resubmit_project_task(task_id, role, user_id, updates)
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error resubmitting project task {task_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {'message': 'Submission resubmitted successfully', 'task': task.to_item()})
