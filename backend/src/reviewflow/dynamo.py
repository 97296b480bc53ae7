"""
DynamoDB-backed store.

Every update is a full-item put conditioned on the version that was read,
so a status check and the write that depends on it are one atomic step.
Writes spanning two tables go through transact_write_items.
"""
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .config import config
from .errors import LockHeld, PersistenceFailure, VersionConflict
from .logging import logger
from .models import ProjectTask, Review, Task, Worker

CONFLICT_CODES = ('ConditionalCheckFailedException', 'TransactionCanceledException')

_serializer = TypeSerializer()


def _translate(error: ClientError, context: str) -> Exception:
    """Map a botocore error onto the engine taxonomy."""
    code = error.response.get('Error', {}).get('Code', '')
    if code in CONFLICT_CODES:
        return VersionConflict(f"{context}: {code}")
    logger.error(f"DynamoDB error during {context}: {error}")
    return PersistenceFailure(f"{context} failed: {code or error}")


def _serialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a plain item to the low-level attribute-value format."""
    return {k: _serializer.serialize(v) for k, v in item.items()}


class DynamoStore:
    """Record store over the platform's DynamoDB tables."""

    def __init__(self, resource=None, client=None, tables: Dict[str, str] = None):
        self.dynamodb = resource or boto3.resource('dynamodb', region_name=config.AWS_REGION)
        self.client = client or self.dynamodb.meta.client
        names = {
            'workers': config.WORKERS_TABLE,
            'tasks': config.TASKS_TABLE,
            'project_tasks': config.PROJECT_TASKS_TABLE,
            'reviews': config.REVIEWS_TABLE,
            'locks': config.LOCKS_TABLE,
        }
        names.update(tables or {})
        self.table_names = names

    def _table(self, name: str):
        return self.dynamodb.Table(self.table_names[name])

    # Generic helpers

    def _get(self, name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = self._table(name).get_item(Key=key)
        except ClientError as e:
            raise _translate(e, f"get {name}") from e
        return response.get('Item')

    def _scan(self, name: str, filter_expression=None) -> List[Dict[str, Any]]:
        """Scan a whole table, following pagination."""
        table = self._table(name)
        params = {}
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression
        items = []
        try:
            while True:
                response = table.scan(**params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            raise _translate(e, f"scan {name}") from e
        return items

    def _create(self, name: str, key_attr: str, record):
        try:
            self._table(name).put_item(
                Item=record.to_item(),
                ConditionExpression=f'attribute_not_exists({key_attr})',
            )
        except ClientError as e:
            raise _translate(e, f"create {name}") from e
        return record.copy()

    def _compare_and_set(self, name: str, record):
        saved = record.copy(version=record.version + 1)
        try:
            self._table(name).put_item(
                Item=saved.to_item(),
                ConditionExpression='version = :expected',
                ExpressionAttributeValues={':expected': record.version},
            )
        except ClientError as e:
            raise _translate(e, f"update {name}") from e
        return saved

    def _delete(self, name: str, key: Dict[str, Any]) -> None:
        try:
            self._table(name).delete_item(Key=key)
        except ClientError as e:
            raise _translate(e, f"delete {name}") from e

    # Workers

    def get_worker(self, worker_id: str) -> Optional[Worker]:
        item = self._get('workers', {'workerId': worker_id})
        return Worker.from_item(item) if item else None

    def list_workers(self) -> List[Worker]:
        workers = [Worker.from_item(i) for i in self._scan('workers')]
        return sorted(workers, key=lambda w: (w.created_at, w.worker_id))

    def put_worker(self, worker: Worker) -> Worker:
        return self._create('workers', 'workerId', worker)

    def update_worker(self, worker: Worker) -> Worker:
        return self._compare_and_set('workers', worker)

    def delete_worker(self, worker_id: str) -> None:
        self._delete('workers', {'workerId': worker_id})

    # Simple tasks

    def get_task(self, task_id: str) -> Optional[Task]:
        item = self._get('tasks', {'taskId': task_id})
        return Task.from_item(item) if item else None

    def list_tasks(self) -> List[Task]:
        return [Task.from_item(i) for i in self._scan('tasks')]

    def put_task(self, task: Task) -> Task:
        return self._create('tasks', 'taskId', task)

    def update_task(self, task: Task) -> Task:
        return self._compare_and_set('tasks', task)

    def add_review(self, review: Review, task: Task) -> Task:
        """
        Transactional write:
        1. Create the Review record.
        2. Write the task, conditioned on the version that was read.
        """
        saved = task.copy(version=task.version + 1)
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        'Put': {
                            'TableName': self.table_names['reviews'],
                            'Item': _serialize(review.to_item()),
                            'ConditionExpression': 'attribute_not_exists(reviewId)'
                        }
                    },
                    {
                        'Put': {
                            'TableName': self.table_names['tasks'],
                            'Item': _serialize(saved.to_item()),
                            'ConditionExpression': 'version = :expected',
                            'ExpressionAttributeValues': {
                                ':expected': _serializer.serialize(task.version)
                            }
                        }
                    }
                ]
            )
        except ClientError as e:
            raise _translate(e, 'add review') from e
        return saved

    def list_reviews(self, task_id: str = None) -> List[Review]:
        condition = Attr('taskId').eq(task_id) if task_id else None
        return [Review.from_item(i) for i in self._scan('reviews', condition)]

    def delete_task(self, task_id: str) -> int:
        """Delete a task, then its reviews. Returns the number of reviews removed."""
        reviews = self.list_reviews(task_id)
        self._delete('tasks', {'taskId': task_id})
        try:
            with self._table('reviews').batch_writer() as batch:
                for review in reviews:
                    batch.delete_item(Key={'reviewId': review.review_id})
        except ClientError as e:
            raise _translate(e, 'delete reviews') from e
        logger.info(f"Deleted task {task_id} and {len(reviews)} reviews")
        return len(reviews)

    # Project tasks

    def get_project_task(self, task_id: str) -> Optional[ProjectTask]:
        item = self._get('project_tasks', {'taskId': task_id})
        return ProjectTask.from_item(item) if item else None

    def list_project_tasks(self) -> List[ProjectTask]:
        return [ProjectTask.from_item(i) for i in self._scan('project_tasks')]

    def put_project_task(self, task: ProjectTask) -> ProjectTask:
        return self._create('project_tasks', 'taskId', task)

    def update_project_task(self, task: ProjectTask) -> ProjectTask:
        return self._compare_and_set('project_tasks', task)

    def delete_project_task(self, task_id: str) -> None:
        self._delete('project_tasks', {'taskId': task_id})

    # Advisory locks

    @contextmanager
    def lock(self, name: str, ttl_seconds: int = None):
        """
        Advisory lock stored as an item in the locks table.

        Acquisition is non-blocking. An expired lock (holder crashed) may be
        taken over.
        """
        owner = str(uuid.uuid4())
        now = int(time.time())
        ttl = ttl_seconds or config.REDISTRIBUTE_LOCK_TTL_SECONDS
        table = self._table('locks')
        try:
            table.put_item(
                Item={'lockName': name, 'owner': owner, 'expiresAt': now + ttl},
                ConditionExpression='attribute_not_exists(lockName) OR expiresAt < :now',
                ExpressionAttributeValues={':now': now},
            )
        except ClientError as e:
            error = _translate(e, f"lock {name}")
            if isinstance(error, VersionConflict):
                raise LockHeld(name) from e
            raise error from e
        try:
            yield
        finally:
            try:
                table.delete_item(
                    Key={'lockName': name},
                    ConditionExpression='#owner = :owner',
                    ExpressionAttributeNames={'#owner': 'owner'},
                    ExpressionAttributeValues={':owner': owner},
                )
            except ClientError as e:
                # Lock expires on its own
                logger.warning(f"Could not release lock {name}: {e}")
