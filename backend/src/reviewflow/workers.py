"""
Worker administration: registration, approval, availability, role changes
and account deletion.
"""
from typing import Any, Dict

from tenacity import Retrying, retry_if_exception_type, stop_after_delay, wait_random

from .activity_log import record_activity
from .concurrency import with_cas_retry
from .config import config
from .errors import LockHeld, NotFound, PermissionDenied, PreconditionFailed, ValidationError, VersionConflict
from .logging import logger
from .models import ActivityAction, ActivityEvent, Role, Worker
from .projects import ProjectWorkflow
from .redistribution import RedistributionEngine
from .submissions import SubmissionWorkflow

# Only these roles opt in and out of receiving work
AVAILABILITY_ROLES = frozenset({Role.TESTER, Role.REVIEWER, Role.ADMIN})
APPROVABLE_ROLES = frozenset({Role.TESTER, Role.REVIEWER})
# Eligible from the moment they register
SELF_APPROVED_ROLES = frozenset({Role.CONTRIBUTOR, Role.ADMIN})


def _parse_role(value) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(f"Invalid role: {value}")


class WorkerService:
    """Admin operations on worker accounts."""

    def __init__(self, store, submissions: SubmissionWorkflow, projects: ProjectWorkflow,
                 redistribution: RedistributionEngine, activity_log=None):
        self.store = store
        self.submissions = submissions
        self.projects = projects
        self.redistribution = redistribution
        self.activity_log = activity_log
        self.lock_wait_seconds = config.REDISTRIBUTE_LOCK_WAIT_SECONDS

    def register_worker(self, worker_id: str, role, name: str = '', email: str = '') -> Worker:
        role = _parse_role(role)
        if role == Role.SYSTEM:
            raise ValidationError('SYSTEM is not an account role')
        try:
            worker = self.store.put_worker(Worker(
                worker_id=worker_id,
                role=role,
                name=name,
                email=email,
                eligible=role in SELF_APPROVED_ROLES,
            ))
        except VersionConflict:
            raise PreconditionFailed(f"Worker {worker_id} is already registered")
        self._record(ActivityAction.REGISTER_WORKER, f'{name or worker_id} signed up as {role.value}',
                     worker_id, role, worker, {})
        return worker

    def approve_worker(self, worker_id: str, admin_id: str, admin_role: Role = Role.ADMIN) -> Worker:
        """Mark a tester or reviewer as eligible to receive work."""
        def attempt() -> Worker:
            worker = self._load(worker_id)
            if worker.role not in APPROVABLE_ROLES:
                raise PreconditionFailed(f"Worker {worker_id} is not a tester or reviewer")
            return self.store.update_worker(worker.copy(eligible=True))

        worker = with_cas_retry(attempt)
        self._record(ActivityAction.APPROVE_WORKER,
                     f'Admin approved {worker.role.value.lower()}: {worker.name or worker.worker_id}',
                     admin_id, admin_role, worker, {})
        return worker

    def set_availability(self, worker_id: str, available: bool, actor_id: str = None,
                         actor_role: Role = Role.ADMIN) -> Dict[str, Any]:
        """
        Switch a worker's green light on or off.

        Turning it on rebalances the submission backlog; for a tester it also
        drains the queued project tasks.

        Returns:
            Dict with the saved worker and the number of tasks redistributed
        """
        def attempt():
            worker = self._load(worker_id)
            if worker.role not in AVAILABILITY_ROLES:
                raise PreconditionFailed(f"Worker {worker_id} must be a tester, reviewer or admin")
            if worker.available == available:
                return worker, False
            return self.store.update_worker(worker.copy(available=available)), True

        worker, flipped = with_cas_retry(attempt)

        redistributed = 0
        if flipped and available:
            redistributed = self._absorb_capacity(worker)

        if flipped:
            status = 'ON' if available else 'OFF'
            metadata = {'status': status}
            if redistributed:
                metadata['tasksRedistributed'] = redistributed
            self._record(ActivityAction.TOGGLE_AVAILABILITY,
                         f'Green light turned {status} for {worker.name or worker.worker_id}',
                         actor_id or worker_id, actor_role, worker, metadata)
        return {'worker': worker, 'tasksRedistributed': redistributed}

    def toggle_availability(self, worker_id: str, actor_id: str = None,
                            actor_role: Role = Role.ADMIN) -> Dict[str, Any]:
        worker = self._load(worker_id)
        return self.set_availability(worker_id, not worker.available, actor_id, actor_role)

    def switch_role(self, worker_id: str, new_role, admin_id: str, admin_role: Role = Role.ADMIN) -> Worker:
        """
        Change a worker's role.

        Contributors are always eligible. Moving into TESTER from another role
        revokes eligibility until an admin approves the worker again.
        """
        new_role = _parse_role(new_role)
        if new_role == Role.SYSTEM:
            raise ValidationError('SYSTEM is not an account role')

        def attempt():
            worker = self._load(worker_id)
            changes = {'role': new_role}
            if new_role == Role.CONTRIBUTOR:
                changes['eligible'] = True
            elif new_role == Role.TESTER and worker.role != Role.TESTER:
                changes['eligible'] = False
            return self.store.update_worker(worker.copy(**changes)), worker.role

        worker, old_role = with_cas_retry(attempt)
        self._record(ActivityAction.SWITCH_ROLE,
                     f"Admin switched {worker.name or worker.worker_id}'s role from "
                     f"{old_role.value} to {new_role.value}",
                     admin_id, admin_role, worker, {'oldRole': old_role.value, 'newRole': new_role.value})
        return worker

    def delete_worker(self, worker_id: str, actor_id: str, actor_role: Role = Role.ADMIN) -> Dict[str, Any]:
        """
        Delete a worker account after releasing everything bound to it.

        The worker is taken out of the pool first so no assignment can bind
        new work while bindings are being released. A contributor's own
        submissions and project tasks are deleted with the account.

        Returns:
            Deletion summary

        Raises:
            PermissionDenied: deleting yourself or an admin
        """
        if worker_id == actor_id:
            raise PermissionDenied('Cannot delete your own account', role=getattr(actor_role, 'value', actor_role))
        worker = self._load(worker_id)
        if worker.role == Role.ADMIN:
            raise PermissionDenied('Cannot delete admin users', role=getattr(actor_role, 'value', actor_role))

        def withdraw() -> Worker:
            current = self._load(worker_id)
            return self.store.update_worker(current.copy(available=False, eligible=False))

        with_cas_retry(withdraw)

        summary = {
            'userName': worker.name,
            'userEmail': worker.email,
            'userRole': worker.role.value,
            'submissionsDeleted': 0,
            'projectTasksDeleted': 0,
            'reviewsDeleted': 0,
            'assignmentsUnassigned': 0,
            'projectAssignmentsReleased': 0,
        }

        if worker.role == Role.CONTRIBUTOR:
            for task in self.store.list_tasks():
                if task.contributor_id == worker_id:
                    summary['reviewsDeleted'] += self.store.delete_task(task.task_id)
                    summary['submissionsDeleted'] += 1
            for task in self.store.list_project_tasks():
                if task.contributor_id == worker_id:
                    self.store.delete_project_task(task.task_id)
                    summary['projectTasksDeleted'] += 1

        summary['assignmentsUnassigned'] = len(self.submissions.release_worker(worker_id))
        summary['projectAssignmentsReleased'] = len(self.projects.release_worker(worker_id))

        self.store.delete_worker(worker_id)
        logger.info(f"Deleted {worker.role.value} {worker_id}: {summary}")
        self._record(ActivityAction.DELETE_USER,
                     f'Admin deleted {worker.role.value} account: {worker.name or worker_id}',
                     actor_id, actor_role, worker, summary)
        return summary

    # Helpers

    def _load(self, worker_id: str) -> Worker:
        worker = self.store.get_worker(worker_id)
        if worker is None:
            raise NotFound('Worker', worker_id)
        return worker

    def _absorb_capacity(self, worker: Worker) -> int:
        """
        Hand backlog to a worker who just came online.

        A redistribution already running holds the lock; wait for it to
        finish and run again so the new worker is part of the pool. Past
        lock_wait_seconds the rebalance is skipped.
        """
        retryer = Retrying(
            retry=retry_if_exception_type(LockHeld),
            stop=stop_after_delay(self.lock_wait_seconds),
            wait=wait_random(min=0.01, max=0.1),
            reraise=True,
        )
        count = 0
        try:
            count += retryer(self.redistribution.redistribute_all)
        except LockHeld as e:
            logger.warning(f"Skipping redistribution for {worker.worker_id} after "
                           f"{self.lock_wait_seconds}s: {e}")
        if worker.role == Role.TESTER:
            count += self.redistribution.assign_queued_projects()
        return count

    def _record(self, action: str, description: str, actor_id: str, actor_role, worker: Worker,
                metadata: dict) -> None:
        actor = self.store.get_worker(actor_id) if actor_id != worker.worker_id else worker
        record_activity(self.activity_log, ActivityEvent(
            action=action,
            description=description,
            actor_id=actor_id,
            actor_name=(actor.name or None) if actor else None,
            actor_role=getattr(actor_role, 'value', actor_role),
            target_id=worker.worker_id,
            target_type='user',
            metadata=metadata,
        ))
