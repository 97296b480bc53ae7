"""
Assignment engine: least-loaded selection and atomic binding.

No worker available is the normal "no capacity" state, not an error: the
task stays queued and the call returns None.
"""
from typing import Dict, Iterable, Optional, Tuple

from .activity_log import record_activity
from .concurrency import with_cas_retry
from .directory import REVIEWER_POOL, SUBMISSION_POOL, TESTER_POOL, Pool, WorkerPoolDirectory
from .errors import NotFound, PreconditionFailed
from .logging import logger
from .models import (
    REVIEWER_PHASE_STATUSES,
    ActivityAction,
    ActivityEvent,
    ProjectStatus,
    TaskStatus,
    Worker,
)
from .notifier import notify_status_change
from .utils import utc_now_iso


def select_least_loaded(candidates: Iterable[Worker], loads: Dict[str, int]) -> Optional[Worker]:
    """
    Pick the candidate with strictly minimal load.

    Ties go to the first candidate in iteration order, which keeps the
    choice deterministic.
    """
    chosen = None
    chosen_load = None
    for worker in candidates:
        load = loads.get(worker.worker_id, 0)
        if chosen is None or load < chosen_load:
            chosen = worker
            chosen_load = load
    return chosen


class AssignmentEngine:
    """Binds tasks to the least-loaded eligible and available worker."""

    def __init__(self, store, directory: WorkerPoolDirectory = None, activity_log=None, notifier=None):
        self.store = store
        self.directory = directory or WorkerPoolDirectory(store)
        self.activity_log = activity_log
        self.notifier = notifier

    def choose(self, pool: Pool) -> Optional[Worker]:
        """Least-loaded worker of the pool, or None when nobody is available."""
        candidates = self.directory.eligible_available_workers(pool.roles)
        if not candidates:
            return None
        loads = self.directory.load_snapshot(pool, candidates)
        return select_least_loaded(candidates, loads)

    # Simple submissions

    def assign(self, task_id: str) -> Optional[str]:
        """
        Bind a PENDING submission to a reviewer and move it to CLAIMED.

        Returns:
            The chosen worker id, or None if no worker is available

        Raises:
            NotFound: unknown task
            PreconditionFailed: task is already bound
            PersistenceFailure: the write failed; the task is unchanged
        """
        def attempt() -> Optional[Tuple]:
            task = self.store.get_task(task_id)
            if task is None:
                raise NotFound('Task', task_id)
            if task.status != TaskStatus.PENDING or task.claimed_by:
                raise PreconditionFailed('Task is already assigned', current_status=task.status.value)

            worker = self.choose(SUBMISSION_POOL)
            if worker is None:
                return None

            saved = self.store.update_task(task.copy(
                status=TaskStatus.CLAIMED,
                claimed_by=worker.worker_id,
                assigned_at=utc_now_iso(),
            ))
            return saved, worker

        result = with_cas_retry(attempt)
        if result is None:
            logger.info(f"No eligible reviewers available; task {task_id} stays queued")
            return None

        task, worker = result
        self.record_assignment(task.task_id, task.title, worker, SUBMISSION_POOL)
        notify_status_change(self.notifier, task.task_id, task.status)
        return worker.worker_id

    # Project tasks

    def assign_tester(self, task_id: str) -> Optional[str]:
        """
        Bind a freshly submitted project task to a tester (TASK_SUBMITTED → IN_TESTING).

        Returns:
            The chosen tester id, or None if no tester is available
        """
        def attempt() -> Optional[Tuple]:
            task = self._load_project_task(task_id)
            if task.status != ProjectStatus.TASK_SUBMITTED or task.tester_id:
                raise PreconditionFailed('Task already has a tester', current_status=task.status.value)

            tester = self.choose(TESTER_POOL)
            if tester is None:
                return None

            saved = self.store.update_project_task(task.copy(
                status=ProjectStatus.IN_TESTING,
                tester_id=tester.worker_id,
                tester_assigned_at=utc_now_iso(),
            ))
            return saved, tester

        result = with_cas_retry(attempt)
        if result is None:
            logger.info(f"No eligible testers available; project task {task_id} stays queued")
            return None

        task, tester = result
        self.record_assignment(task.task_id, task.title, tester, TESTER_POOL)
        notify_status_change(self.notifier, task.task_id, task.status)
        return tester.worker_id

    def assign_reviewer(self, task_id: str) -> Optional[str]:
        """
        Fill an empty reviewer binding on a project task in the review phase.

        Status is left as is; only the binding changes.
        """
        def attempt() -> Optional[Tuple]:
            task = self._load_project_task(task_id)
            if task.reviewer_id:
                raise PreconditionFailed('Task already has a reviewer', current_status=task.status.value)
            if task.status not in REVIEWER_PHASE_STATUSES:
                raise PreconditionFailed(
                    'Task is not waiting for a reviewer',
                    current_status=task.status.value,
                    allowed_statuses=[s.value for s in REVIEWER_PHASE_STATUSES],
                )

            reviewer = self.choose(REVIEWER_POOL)
            if reviewer is None:
                return None

            saved = self.store.update_project_task(task.copy(
                reviewer_id=reviewer.worker_id,
                reviewer_assigned_at=utc_now_iso(),
            ))
            return saved, reviewer

        result = with_cas_retry(attempt)
        if result is None:
            logger.info(f"No eligible reviewers available for project task {task_id}")
            return None

        task, reviewer = result
        self.record_assignment(task.task_id, task.title, reviewer, REVIEWER_POOL)
        return reviewer.worker_id

    # Helpers

    def _load_project_task(self, task_id: str):
        task = self.store.get_project_task(task_id)
        if task is None:
            raise NotFound('ProjectTask', task_id)
        return task

    def record_assignment(self, task_id: str, title: str, worker: Worker, pool: Pool) -> None:
        logger.info(f"Auto-assigned {pool.name} task {task_id} to {worker.worker_id}")
        record_activity(self.activity_log, ActivityEvent.system(
            action=ActivityAction.AUTO_ASSIGN,
            description=f'Task "{title}" auto-assigned to {worker.name or worker.worker_id}',
            target_id=task_id,
            target_type='project_task' if pool.project else 'submission',
            metadata={
                'workerId': worker.worker_id,
                'workerName': worker.name,
                'pool': pool.name,
            },
        ))
