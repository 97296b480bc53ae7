"""
Create Project Task Handler.
POST /projects/tasks

Validates the submission, stores it as TASK_SUBMITTED and hands it to the
least-loaded available tester.
"""
from reviewflow.auth import get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, parse_body

# camelCase request keys -> record fields
FIELDS = {
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
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})

    body = parse_body(event)
    payload = {field: body.get(key) for key, field in FIELDS.items()}

    try:
        task = get_service().create_project_task(user_id, payload)
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error creating project task: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(201, {
        'message': 'Project task submitted successfully',
        'task': task.to_item(),
        'testerAssigned': task.tester_id is not None,
    })
