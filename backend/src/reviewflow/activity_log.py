"""
Activity log sinks.

Recording is fire-and-forget from the engine's point of view: a failed write
is logged locally and never fails the transition that produced it.
"""
from typing import List

import boto3
from botocore.exceptions import ClientError

from .config import config
from .logging import logger
from .models import ActivityEvent


class DynamoActivityLog:
    """Append-only activity log in DynamoDB."""

    def __init__(self, table_name: str = None, resource=None):
        self.dynamodb = resource or boto3.resource('dynamodb', region_name=config.AWS_REGION)
        self.table_name = table_name or config.ACTIVITY_LOG_TABLE

    def record(self, event: ActivityEvent) -> None:
        self.dynamodb.Table(self.table_name).put_item(
            Item=event.to_item(),
            ConditionExpression='attribute_not_exists(eventId)',
        )


class MemoryActivityLog:
    """Activity log kept in a list. Used by tests and local runs."""

    def __init__(self):
        self.events: List[ActivityEvent] = []

    def record(self, event: ActivityEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [e.action for e in self.events]


def record_activity(sink, event: ActivityEvent) -> bool:
    """
    Record an event, swallowing sink failures.

    Args:
        sink: Any object with a record(event) method, or None
        event: The event to record

    Returns:
        True if recorded, False otherwise
    """
    if sink is None:
        return False
    try:
        sink.record(event)
        return True
    except ClientError as e:
        logger.warning(f"Activity log write failed for {event.action}: {e}")
    except Exception as e:
        logger.warning(f"Activity log sink error for {event.action}: {e}")
    return False
