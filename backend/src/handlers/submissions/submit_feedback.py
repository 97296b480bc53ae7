"""
Submit Feedback Handler.
POST /submissions/{taskId}/feedback

The bound reviewer (or an admin) leaves a review and may mark the
submission eligible in the same request.
"""
from reviewflow.auth import get_user_role, get_user_sub
from reviewflow.errors import ReviewFlowError
from reviewflow.logging import log_event, logger
from reviewflow.service import get_service
from reviewflow.utils import error_response, format_response, get_path_param, parse_body


def handler(event, context):
    """
    Body:
        feedback: Review text (required)
        markEligible: Advance CLAIMED to ELIGIBLE (default false)
        accountPostedIn: Optional account the work was posted under
    """
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'message': 'Unauthorized'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'message': 'Missing taskId'})

    body = parse_body(event)

    try:
        review, task = get_service().submit_feedback(
            task_id,
            user_id,
            body.get('feedback'),
            bool(body.get('markEligible', False)),
            account_posted_in=body.get('accountPostedIn'),
            actor_role=get_user_role(event),
        )
    except ReviewFlowError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error submitting feedback for {task_id}: {e}")
        return format_response(500, {'message': 'Internal Server Error'})

    return format_response(200, {
        'message': 'Feedback submitted successfully',
        'review': review.to_item(),
        'submission': task.to_item(),
    })
