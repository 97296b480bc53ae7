"""
In-memory store with the same interface as DynamoStore.

Used by tests and local runs. Each instance owns its data and its lock, so
independent instances never share state.
"""
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from .errors import LockHeld, VersionConflict
from .models import ProjectTask, Review, Task, Worker


class MemoryStore:
    """Thread-safe record store with version-checked updates."""

    def __init__(self):
        self._mutex = threading.RLock()
        self._workers: Dict[str, Worker] = {}
        self._tasks: Dict[str, Task] = {}
        self._project_tasks: Dict[str, ProjectTask] = {}
        self._reviews: Dict[str, Review] = {}
        self._locks: Dict[str, threading.Lock] = {}

    # Generic helpers

    def _create(self, table: dict, key: str, record):
        with self._mutex:
            if key in table:
                raise VersionConflict(f"{key} already exists")
            table[key] = record.copy()
            return record.copy()

    def _compare_and_set(self, table: dict, key: str, record):
        with self._mutex:
            stored = table.get(key)
            if stored is None or stored.version != record.version:
                raise VersionConflict(f"{key} changed since version {record.version}")
            saved = record.copy(version=record.version + 1)
            table[key] = saved
            return saved.copy()

    def _get(self, table: dict, key: str):
        with self._mutex:
            record = table.get(key)
            return record.copy() if record is not None else None

    def _list(self, table: dict) -> list:
        with self._mutex:
            return [record.copy() for record in table.values()]

    # Workers

    def get_worker(self, worker_id: str) -> Optional[Worker]:
        return self._get(self._workers, worker_id)

    def list_workers(self) -> List[Worker]:
        return self._list(self._workers)

    def put_worker(self, worker: Worker) -> Worker:
        return self._create(self._workers, worker.worker_id, worker)

    def update_worker(self, worker: Worker) -> Worker:
        return self._compare_and_set(self._workers, worker.worker_id, worker)

    def delete_worker(self, worker_id: str) -> None:
        with self._mutex:
            self._workers.pop(worker_id, None)

    # Simple tasks

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._get(self._tasks, task_id)

    def list_tasks(self) -> List[Task]:
        return self._list(self._tasks)

    def put_task(self, task: Task) -> Task:
        return self._create(self._tasks, task.task_id, task)

    def update_task(self, task: Task) -> Task:
        return self._compare_and_set(self._tasks, task.task_id, task)

    def add_review(self, review: Review, task: Task) -> Task:
        """Store a review and write the task in one atomic step."""
        with self._mutex:
            saved = self._compare_and_set(self._tasks, task.task_id, task)
            self._reviews[review.review_id] = review.copy()
            return saved

    def list_reviews(self, task_id: str = None) -> List[Review]:
        with self._mutex:
            return [
                r.copy() for r in self._reviews.values()
                if task_id is None or r.task_id == task_id
            ]

    def delete_task(self, task_id: str) -> int:
        """Delete a task and its reviews. Returns the number of reviews removed."""
        with self._mutex:
            self._tasks.pop(task_id, None)
            doomed = [rid for rid, r in self._reviews.items() if r.task_id == task_id]
            for rid in doomed:
                del self._reviews[rid]
            return len(doomed)

    # Project tasks

    def get_project_task(self, task_id: str) -> Optional[ProjectTask]:
        return self._get(self._project_tasks, task_id)

    def list_project_tasks(self) -> List[ProjectTask]:
        return self._list(self._project_tasks)

    def put_project_task(self, task: ProjectTask) -> ProjectTask:
        return self._create(self._project_tasks, task.task_id, task)

    def update_project_task(self, task: ProjectTask) -> ProjectTask:
        return self._compare_and_set(self._project_tasks, task.task_id, task)

    def delete_project_task(self, task_id: str) -> None:
        with self._mutex:
            self._project_tasks.pop(task_id, None)

    # Advisory locks

    @contextmanager
    def lock(self, name: str):
        """Non-blocking advisory lock; raises if another caller holds it."""
        with self._mutex:
            lock = self._locks.setdefault(name, threading.Lock())
        if not lock.acquire(blocking=False):
            raise LockHeld(name)
        try:
            yield
        finally:
            lock.release()
