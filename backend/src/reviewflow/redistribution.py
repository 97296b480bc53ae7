"""
Redistribution engine: drains the queue and rebalances the backlog.

Load counters are local to a call. The store's advisory lock serializes
full rebalances so two callers never interleave their writes.
"""
from typing import Dict, List, Optional, Tuple

from .activity_log import record_activity
from .assignment import AssignmentEngine, select_least_loaded
from .concurrency import with_cas_retry
from .directory import SUBMISSION_POOL, TESTER_POOL, WorkerPoolDirectory
from .errors import PersistenceFailure
from .logging import logger
from .models import (
    OPEN_TASK_STATUSES,
    ActivityAction,
    ActivityEvent,
    ProjectStatus,
    TaskStatus,
    Worker,
)
from .notifier import notify_status_changes
from .utils import utc_now_iso

REDISTRIBUTE_LOCK = 'redistribute-all'


def _oldest_first(tasks: list) -> list:
    return sorted(tasks, key=lambda t: (t.created_at, t.task_id))


class RedistributionEngine:
    """Bulk assignment over the simple and project queues."""

    def __init__(self, store, assignment: AssignmentEngine = None, directory: WorkerPoolDirectory = None,
                 activity_log=None, notifier=None):
        self.store = store
        self.directory = directory or WorkerPoolDirectory(store)
        self.activity_log = activity_log
        self.notifier = notifier
        self.assignment = assignment or AssignmentEngine(
            store, self.directory, activity_log=activity_log, notifier=notifier
        )

    @staticmethod
    def quotas(task_count: int, worker_count: int) -> List[int]:
        """
        Per-worker task quotas for an even split.

        The first task_count % worker_count workers take one extra task.

        >>> RedistributionEngine.quotas(7, 3)
        [3, 2, 2]
        """
        if worker_count <= 0:
            return []
        base, extra = divmod(task_count, worker_count)
        return [base + 1 if i < extra else base for i in range(worker_count)]

    def assign_queued(self) -> int:
        """
        Assign every PENDING unbound submission, oldest first.

        Returns:
            Number of tasks assigned
        """
        workers = self.directory.eligible_available_workers(SUBMISSION_POOL.roles)
        if not workers:
            logger.info("No eligible reviewers available; queue left as is")
            return 0

        queued = _oldest_first([
            t for t in self.store.list_tasks()
            if t.status == TaskStatus.PENDING and not t.claimed_by
        ])
        loads = self.directory.load_snapshot(SUBMISSION_POOL, workers)
        changes = []
        for task in queued:
            worker = select_least_loaded(workers, loads)
            try:
                saved = with_cas_retry(lambda: self._claim_if_queued(task.task_id, worker))
            except PersistenceFailure as e:
                logger.error(f"Could not assign queued task {task.task_id}: {e}")
                continue
            if saved is None:
                continue
            loads[worker.worker_id] += 1
            self.assignment.record_assignment(saved.task_id, saved.title, worker, SUBMISSION_POOL)
            changes.append((saved.task_id, saved.status))

        notify_status_changes(self.notifier, changes)
        logger.info(f"Assigned {len(changes)} of {len(queued)} queued tasks")
        return len(changes)

    def assign_queued_projects(self) -> int:
        """
        Bind a tester to every TASK_SUBMITTED project task without one.

        Returns:
            Number of project tasks moved to IN_TESTING
        """
        testers = self.directory.eligible_available_workers(TESTER_POOL.roles)
        if not testers:
            logger.info("No eligible testers available; project queue left as is")
            return 0

        queued = _oldest_first([
            t for t in self.store.list_project_tasks()
            if t.status == ProjectStatus.TASK_SUBMITTED and not t.tester_id
        ])
        loads = self.directory.load_snapshot(TESTER_POOL, testers)
        changes = []
        for task in queued:
            tester = select_least_loaded(testers, loads)
            try:
                saved = with_cas_retry(lambda: self._start_testing_if_queued(task.task_id, tester))
            except PersistenceFailure as e:
                logger.error(f"Could not assign queued project task {task.task_id}: {e}")
                continue
            if saved is None:
                continue
            loads[tester.worker_id] += 1
            self.assignment.record_assignment(saved.task_id, saved.title, tester, TESTER_POOL)
            changes.append((saved.task_id, saved.status))

        notify_status_changes(self.notifier, changes)
        logger.info(f"Assigned {len(changes)} of {len(queued)} queued project tasks")
        return len(changes)

    def redistribute_all(self) -> int:
        """
        Rebalance every open submission evenly across the available pool.

        Tasks are walked oldest first and handed to the current target worker
        until its quota is met. Tasks already bound to their target are left
        untouched, so a second run over a stable pool changes nothing.

        Returns:
            Number of tasks whose binding or status changed

        Raises:
            LockHeld: another redistribution is running
        """
        with self.store.lock(REDISTRIBUTE_LOCK):
            workers = self.directory.eligible_available_workers(SUBMISSION_POOL.roles)
            if not workers:
                logger.info("No eligible reviewers available; nothing to redistribute")
                return 0

            tasks = _oldest_first([t for t in self.store.list_tasks() if t.status in OPEN_TASK_STATUSES])
            plan = self._plan(tasks, workers)

            changes = []
            distribution: Dict[str, int] = {w.worker_id: 0 for w in workers}
            for task, worker in plan:
                distribution[worker.worker_id] += 1
                try:
                    saved = with_cas_retry(lambda: self._rebind(task.task_id, worker))
                except PersistenceFailure as e:
                    logger.error(f"Could not redistribute task {task.task_id}: {e}")
                    continue
                if saved is not None:
                    changes.append((saved.task_id, saved.status))

        logger.info(f"Redistributed {len(changes)} of {len(tasks)} open tasks across {len(workers)} workers")
        record_activity(self.activity_log, ActivityEvent.system(
            action=ActivityAction.REDISTRIBUTE,
            description=f'Redistributed {len(changes)} tasks across {len(workers)} workers',
            metadata={
                'tasksRedistributed': len(changes),
                'openTasks': len(tasks),
                'workerCount': len(workers),
                'distribution': distribution,
            },
        ))
        notify_status_changes(self.notifier, changes)
        return len(changes)

    # Helpers

    def _plan(self, tasks: list, workers: List[Worker]) -> List[Tuple]:
        """Pair each task with its target worker according to the quotas."""
        quotas = self.quotas(len(tasks), len(workers))
        plan = []
        index = 0
        filled = 0
        for task in tasks:
            while filled >= quotas[index]:
                index += 1
                filled = 0
            plan.append((task, workers[index]))
            filled += 1
        return plan

    def _claim_if_queued(self, task_id: str, worker: Worker):
        task = self.store.get_task(task_id)
        if task is None or task.status != TaskStatus.PENDING or task.claimed_by:
            return None
        return self.store.update_task(task.copy(
            status=TaskStatus.CLAIMED,
            claimed_by=worker.worker_id,
            assigned_at=utc_now_iso(),
        ))

    def _start_testing_if_queued(self, task_id: str, tester: Worker):
        task = self.store.get_project_task(task_id)
        if task is None or task.status != ProjectStatus.TASK_SUBMITTED or task.tester_id:
            return None
        return self.store.update_project_task(task.copy(
            status=ProjectStatus.IN_TESTING,
            tester_id=tester.worker_id,
            tester_assigned_at=utc_now_iso(),
        ))

    def _rebind(self, task_id: str, worker: Worker) -> Optional[object]:
        task = self.store.get_task(task_id)
        if task is None or task.status not in OPEN_TASK_STATUSES:
            return None
        if task.claimed_by == worker.worker_id and task.status != TaskStatus.PENDING:
            return None
        status = TaskStatus.CLAIMED if task.status == TaskStatus.PENDING else task.status
        return self.store.update_task(task.copy(
            status=status,
            claimed_by=worker.worker_id,
            assigned_at=utc_now_iso(),
        ))
