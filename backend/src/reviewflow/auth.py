"""
Actor identity from Cognito authorizer claims.

Token issuance and verification happen upstream in API Gateway; handlers
only read the claims it attaches to the proxy event.
"""
from typing import Any, Dict, List, Optional

from .models import Role

# When a user belongs to several groups the most privileged one wins
ROLE_PRECEDENCE = [Role.ADMIN, Role.REVIEWER, Role.TESTER, Role.CONTRIBUTOR]


def _claims(event: dict) -> Dict[str, Any]:
    try:
        return event['requestContext']['authorizer']['claims'] or {}
    except (KeyError, TypeError):
        return {}


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract the actor's id (Cognito sub).

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    return _claims(event).get('sub')


def get_user_groups(event: dict) -> List[str]:
    """Cognito groups, which arrive either comma-joined or as a list."""
    groups = _claims(event).get('cognito:groups') or []
    if isinstance(groups, str):
        groups = groups.split(',')
    return [g.strip().upper() for g in groups if g.strip()]


def get_user_role(event: dict) -> Optional[Role]:
    """Resolve the actor's role from their Cognito groups."""
    groups = set(get_user_groups(event))
    for role in ROLE_PRECEDENCE:
        if role.value in groups:
            return role
    return None


def is_admin(event: dict) -> bool:
    return get_user_role(event) == Role.ADMIN
