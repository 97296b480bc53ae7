"""
Worker pool directory: who can receive work right now, and how loaded they are.

Read path only. Every call goes back to the store so decisions always see
the latest committed bindings.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List

from .models import (
    OPEN_TASK_STATUSES,
    REVIEWER_PHASE_STATUSES,
    TESTER_PHASE_STATUSES,
    Role,
    Worker,
)


@dataclass(frozen=True)
class Pool:
    """
    A class of assignment: which roles may receive it, which statuses count
    as load, and which field on the task holds the binding.
    """
    name: str
    roles: FrozenSet[Role]
    load_statuses: FrozenSet
    binding: str
    project: bool


SUBMISSION_POOL = Pool(
    name='submission',
    roles=frozenset({Role.REVIEWER, Role.ADMIN}),
    load_statuses=OPEN_TASK_STATUSES,
    binding='claimed_by',
    project=False,
)

TESTER_POOL = Pool(
    name='tester',
    roles=frozenset({Role.TESTER}),
    load_statuses=TESTER_PHASE_STATUSES,
    binding='tester_id',
    project=True,
)

REVIEWER_POOL = Pool(
    name='reviewer',
    roles=frozenset({Role.REVIEWER}),
    load_statuses=REVIEWER_PHASE_STATUSES,
    binding='reviewer_id',
    project=True,
)


class WorkerPoolDirectory:
    """Queries eligibility, availability and load against a store."""

    def __init__(self, store):
        self.store = store

    def eligible_available_workers(self, roles: Iterable[Role]) -> List[Worker]:
        """
        Workers that are admin-approved, opted in, and hold one of the roles.

        Order is the store's worker order (registration order), which is
        what assignment tie-breaks use.
        """
        wanted = set(roles)
        return [
            w for w in self.store.list_workers()
            if w.eligible and w.available and w.role in wanted
        ]

    def current_load(self, worker_id: str, statuses: Iterable, binding: str = 'claimed_by',
                     project: bool = False) -> int:
        """Count tasks bound to the worker through `binding` whose status is open."""
        wanted = set(statuses)
        tasks = self.store.list_project_tasks() if project else self.store.list_tasks()
        return sum(
            1 for t in tasks
            if getattr(t, binding) == worker_id and t.status in wanted
        )

    def load_snapshot(self, pool: Pool, workers: Iterable[Worker]) -> Dict[str, int]:
        """
        Current load of every worker in one read of the task table.

        Returns:
            Dict of worker_id -> open task count (0 for idle workers)
        """
        loads = {w.worker_id: 0 for w in workers}
        tasks = self.store.list_project_tasks() if pool.project else self.store.list_tasks()
        for task in tasks:
            bound_to = getattr(task, pool.binding)
            if bound_to in loads and task.status in pool.load_statuses:
                loads[bound_to] += 1
        return loads
