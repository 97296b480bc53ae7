"""
Register Worker Handler.
Triggered by Cognito (Post Confirmation).

Creates the worker record for a newly confirmed account. The role comes
from the custom:role attribute chosen at sign-up.
"""
from reviewflow.errors import PreconditionFailed
from reviewflow.logging import logger
from reviewflow.models import Role
from reviewflow.service import get_service

# Self-service sign-up may only pick these
SIGNUP_ROLES = {Role.CONTRIBUTOR.value, Role.REVIEWER.value, Role.TESTER.value}


def handler(event, context):
    """Cognito triggers must return the event unchanged."""
    attributes = event.get('request', {}).get('userAttributes', {})
    worker_id = attributes.get('sub')
    role = str(attributes.get('custom:role') or Role.CONTRIBUTOR.value).upper()
    if role not in SIGNUP_ROLES:
        logger.warning(f"Sign-up requested role {role}; registering {worker_id} as contributor")
        role = Role.CONTRIBUTOR.value

    try:
        get_service().register_worker(
            worker_id,
            role,
            name=attributes.get('name', ''),
            email=attributes.get('email', ''),
        )
    except PreconditionFailed:
        logger.info(f"Worker {worker_id} already registered")

    return event
