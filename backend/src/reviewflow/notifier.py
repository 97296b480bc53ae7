"""
Status-change broadcasting.

The WebSocket fan-out lives outside the engine; the engine drops one message
per status change onto an SQS queue that the fan-out service consumes.
Delivery is best-effort and never fails the caller.
"""
import json
from typing import Any, Dict, List

import boto3

from .config import config
from .logging import logger
from .utils import utc_now_iso


def status_message(task_id: str, status: str) -> Dict[str, Any]:
    return {
        'type': 'submission_update',
        'submissionId': task_id,
        'status': status,
        'timestamp': utc_now_iso(),
    }


class SqsNotifier:
    """Publishes status changes to the notifications queue."""

    def __init__(self, queue_url: str = None, client=None):
        self.queue_url = queue_url if queue_url is not None else config.NOTIFICATIONS_QUEUE_URL
        self.sqs = client or boto3.client('sqs', region_name=config.AWS_REGION)

    def send_message(self, message_body: Dict[str, Any]) -> bool:
        """
        Send a single message to the queue.

        Args:
            message_body: Message body as dict (will be JSON serialized)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.queue_url:
            return False
        try:
            self.sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(message_body, default=str)
            )
            return True
        except Exception as e:
            logger.error(f"Error sending message to SQS: {e}")
            return False

    def send_message_batch(self, messages: List[Dict[str, Any]]) -> bool:
        """
        Send multiple messages to the queue (max 10 per batch).

        Args:
            messages: List of message bodies

        Returns:
            True if all sent successfully, False otherwise
        """
        if not self.queue_url:
            return False
        try:
            # SQS batch limit is 10 messages
            for i in range(0, len(messages), 10):
                batch = messages[i:i+10]
                entries = [
                    {
                        'Id': str(idx),
                        'MessageBody': json.dumps(msg, default=str)
                    }
                    for idx, msg in enumerate(batch)
                ]

                response = self.sqs.send_message_batch(
                    QueueUrl=self.queue_url,
                    Entries=entries
                )

                if response.get('Failed'):
                    logger.warning(f"Some messages failed: {response['Failed']}")
                    return False

            logger.info(f"Sent {len(messages)} messages to {self.queue_url}")
            return True

        except Exception as e:
            logger.error(f"Error sending batch to SQS: {e}")
            return False

    def broadcast_status_change(self, task_id: str, status: str) -> bool:
        return self.send_message(status_message(task_id, status))

    def broadcast_status_changes(self, changes: List[tuple]) -> bool:
        return self.send_message_batch([status_message(t, s) for t, s in changes])


class MemoryNotifier:
    """Collects broadcasts in a list. Used by tests and local runs."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def broadcast_status_change(self, task_id: str, status: str) -> bool:
        self.messages.append(status_message(task_id, status))
        return True

    def broadcast_status_changes(self, changes: List[tuple]) -> bool:
        for task_id, status in changes:
            self.broadcast_status_change(task_id, status)
        return True


def notify_status_change(notifier, task_id: str, status) -> None:
    """Best-effort broadcast of a single status change."""
    if notifier is None:
        return
    value = getattr(status, 'value', status)
    try:
        notifier.broadcast_status_change(task_id, value)
    except Exception as e:
        logger.warning(f"Status broadcast failed for {task_id}: {e}")


def notify_status_changes(notifier, changes: List[tuple]) -> None:
    """Best-effort broadcast of many status changes at once."""
    if notifier is None or not changes:
        return
    try:
        notifier.broadcast_status_changes(
            [(task_id, getattr(status, 'value', status)) for task_id, status in changes]
        )
    except Exception as e:
        logger.warning(f"Batch status broadcast failed: {e}")
