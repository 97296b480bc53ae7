"""
Logging for the review engine and its Lambda handlers.
"""
import logging
import json

from .config import config

logger = logging.getLogger('reviewflow')
logger.setLevel(config.LOG_LEVEL)

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

# Never logged: request payloads, headers, Cognito trigger attributes
REDACTED_KEYS = ('body', 'headers', 'multiValueHeaders', 'request')

# Claims worth keeping when the authorizer context is logged
LOGGED_CLAIMS = ('sub', 'cognito:groups')


def _redact(event: dict) -> dict:
    safe = {k: v for k, v in event.items() if k not in REDACTED_KEYS}
    context = safe.get('requestContext')
    if isinstance(context, dict) and isinstance(context.get('authorizer'), dict):
        claims = context['authorizer'].get('claims') or {}
        safe['requestContext'] = dict(
            context,
            authorizer={'claims': {k: claims[k] for k in LOGGED_CLAIMS if k in claims}},
        )
    return safe


def log_event(event: dict) -> None:
    """Log an incoming Lambda event without its payload or personal claims."""
    try:
        logger.info(f"Lambda event: {json.dumps(_redact(event), default=str)}")
    except Exception as e:
        logger.warning(f"Could not log event: {e}")
