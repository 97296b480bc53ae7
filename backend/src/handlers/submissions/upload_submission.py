"""
Upload Submission Handler.
POST /submissions

Stores the submission as PENDING and assigns it to the least-loaded
available reviewer. The file itself is uploaded to S3 by the client
beforehand; the body carries its key.
"""
from reviewflow.auth import get_user_role, get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, parse_body


def handler(event, context):
    """
    Body:
        title, domain, language, fileName, fileUrl (optional)
    """
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})

    body = parse_body(event)
    payload = {
        'title': body.get('title'),
        'domain': body.get('domain'),
        'language': body.get('language'),
        'file_name': body.get('fileName'),
        'file_url': body.get('fileUrl'),
    }

    try:
        task = get_service().create_task(user_id, payload, actor_role=get_user_role(event))
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error uploading submission: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(201, {
        'message': 'Submission uploaded successfully',
        'submission': task.to_item(),
        'assigned': task.claimed_by is not None,
    })
