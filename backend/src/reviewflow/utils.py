"""
Response helpers for the Lambda handlers, plus the shared clock.
"""
import enum
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .errors import (
    NotFound,
    PermissionDenied,
    PersistenceFailure,
    PreconditionFailed,
    ValidationError,
)


class ResponseEncoder(json.JSONEncoder):
    """Encodes DynamoDB Decimals and status enums."""

    def default(self, o):
        if isinstance(o, Decimal):
            return int(o) if o % 1 == 0 else float(o)
        if isinstance(o, enum.Enum):
            return o.value
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (sortable)."""
    return datetime.now(timezone.utc).isoformat()


CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Credentials': True,
    'Content-Type': 'application/json',
}


def format_response(status_code: int, body: Any, headers: Dict[str, str] = None) -> Dict[str, Any]:
    """API Gateway proxy response with CORS headers and a JSON body."""
    return {
        'statusCode': status_code,
        'headers': dict(CORS_HEADERS, **(headers or {})),
        'body': json.dumps(body, cls=ResponseEncoder),
    }


def error_response(error: Exception) -> Dict[str, Any]:
    """
    Map an engine error onto an API Gateway response.

    PermissionDenied is checked before PreconditionFailed since it is a subtype.
    """
    if isinstance(error, NotFound):
        return format_response(404, {'message': str(error)})
    if isinstance(error, PermissionDenied):
        return format_response(403, error.to_dict())
    if isinstance(error, PreconditionFailed):
        return format_response(409, error.to_dict())
    if isinstance(error, ValidationError):
        return format_response(400, {'message': str(error)})
    if isinstance(error, PersistenceFailure):
        return format_response(503, {'message': str(error), 'retryable': True})
    return format_response(500, {'message': 'Internal Server Error'})


def parse_body(event: dict) -> dict:
    """
    Parse the JSON body of an API Gateway event.

    Anything that is not a JSON object reads as an empty body.
    """
    body = event.get('body') or {}
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return {}
    return body if isinstance(body, dict) else {}


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    return (event.get('pathParameters') or {}).get(param_name)
