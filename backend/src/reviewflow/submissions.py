"""
Simple submission workflow: PENDING → CLAIMED → ELIGIBLE → APPROVED.
"""
from typing import Any, Dict, List, Optional, Tuple

from .activity_log import record_activity
from .assignment import AssignmentEngine
from .concurrency import with_cas_retry
from .errors import NotFound, PermissionDenied, PreconditionFailed, ValidationError
from .logging import logger
from .models import (
    BOUND_TASK_STATUSES,
    ActivityAction,
    ActivityEvent,
    Review,
    Role,
    Task,
    TaskStatus,
    Worker,
    new_id,
)
from .notifier import notify_status_change
from .utils import utc_now_iso
from .workflow import Transition, TransitionTable, require_text

SIMPLE_TRANSITIONS = TransitionTable([
    Transition(
        destination=TaskStatus.CLAIMED,
        sources=frozenset({TaskStatus.PENDING, TaskStatus.CLAIMED}),
        roles=frozenset({Role.ADMIN}),
        action=ActivityAction.MANUAL_CLAIM,
    ),
    Transition(
        destination=TaskStatus.ELIGIBLE,
        sources=frozenset({TaskStatus.CLAIMED}),
        roles=frozenset({Role.REVIEWER, Role.ADMIN}),
        action=ActivityAction.REVIEW,
        required=('feedback',),
    ),
    Transition(
        destination=TaskStatus.APPROVED,
        sources=frozenset({TaskStatus.ELIGIBLE}),
        roles=frozenset({Role.ADMIN}),
        action=ActivityAction.APPROVE,
    ),
])

REQUIRED_TASK_FIELDS = ('title', 'domain', 'language', 'file_name')
UPLOAD_ROLES = frozenset({Role.CONTRIBUTOR, Role.ADMIN})


def _parse_status(value) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


class SubmissionWorkflow:
    """Lifecycle operations on simple submissions."""

    def __init__(self, store, assignment: AssignmentEngine = None, activity_log=None, notifier=None):
        self.store = store
        self.activity_log = activity_log
        self.notifier = notifier
        self.assignment = assignment or AssignmentEngine(
            store, activity_log=activity_log, notifier=notifier
        )

    def create_task(self, contributor_id: str, payload: Dict[str, Any], actor_role: Role = None) -> Task:
        """
        Store a new PENDING submission and try to assign it right away.

        Returns:
            The task as it stands after the assignment attempt
        """
        actor = self._actor(contributor_id, actor_role)
        if actor.role not in UPLOAD_ROLES:
            raise PermissionDenied(
                'Only contributors and admins can upload submissions',
                role=actor.role.value,
                expected_roles=[r.value for r in UPLOAD_ROLES],
            )
        require_text(payload, REQUIRED_TASK_FIELDS + ('file_url',))
        missing = [f for f in REQUIRED_TASK_FIELDS if not str(payload.get(f) or '').strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        task = self.store.put_task(Task(
            task_id=new_id(),
            contributor_id=contributor_id,
            title=payload['title'].strip(),
            domain=payload['domain'].strip(),
            language=payload['language'].strip(),
            file_name=payload['file_name'].strip(),
            file_url=payload.get('file_url') or '',
        ))
        logger.info(f"Task {task.task_id} uploaded by {contributor_id}")
        self._record(ActivityAction.UPLOAD, f'Uploaded submission "{task.title}"', actor, task,
                     {'domain': task.domain, 'language': task.language, 'fileName': task.file_name})

        self.assignment.assign(task.task_id)
        return self.store.get_task(task.task_id)

    def claim(self, task_id: str, admin_id: str, actor_role: Role = None) -> Task:
        """Admin takes a PENDING or CLAIMED submission for themselves."""
        actor = self._actor(admin_id, actor_role)

        def attempt() -> Tuple[Task, TaskStatus]:
            task = self._load(task_id)
            SIMPLE_TRANSITIONS.resolve(task, TaskStatus.CLAIMED, actor.role, admin_id)
            saved = self.store.update_task(task.copy(
                status=TaskStatus.CLAIMED,
                claimed_by=admin_id,
                assigned_at=utc_now_iso(),
            ))
            return saved, task.status

        task, previous = with_cas_retry(attempt)
        self._record(ActivityAction.MANUAL_CLAIM, f'Claimed submission "{task.title}"', actor, task,
                     {'previousStatus': previous.value})
        notify_status_change(self.notifier, task.task_id, task.status)
        return task

    def submit_feedback(self, task_id: str, reviewer_id: str, feedback: str, mark_eligible: bool,
                        account_posted_in: str = None, actor_role: Role = None) -> Tuple[Review, Task]:
        """
        Leave a review and optionally mark the submission ELIGIBLE.

        The review and the status change are written together. An ELIGIBLE
        task never moves back to CLAIMED.

        Raises:
            ValidationError: empty feedback
            PermissionDenied: actor is neither the bound worker nor an admin
            PreconditionFailed: task is not CLAIMED or ELIGIBLE
        """
        require_text({'feedback': feedback}, ('feedback',))
        if not str(feedback or '').strip():
            raise ValidationError('Feedback is required')
        actor = self._actor(reviewer_id, actor_role)

        def attempt() -> Tuple[Review, Task, TaskStatus]:
            task = self._load(task_id)
            if task.status not in BOUND_TASK_STATUSES:
                raise PreconditionFailed(
                    'Feedback can only be left on claimed submissions',
                    current_status=task.status.value,
                    allowed_statuses=[s.value for s in BOUND_TASK_STATUSES],
                )
            if actor.role != Role.ADMIN and task.claimed_by != reviewer_id:
                raise PermissionDenied(
                    'Only the assigned reviewer or an admin can review this submission',
                    role=actor.role.value,
                    current_status=task.status.value,
                )

            status = task.status
            if mark_eligible and task.status == TaskStatus.CLAIMED:
                SIMPLE_TRANSITIONS.resolve(task, TaskStatus.ELIGIBLE, actor.role, reviewer_id)
                status = TaskStatus.ELIGIBLE

            review = Review(
                review_id=new_id(),
                task_id=task.task_id,
                reviewer_id=reviewer_id,
                feedback=feedback.strip(),
                account_posted_in=account_posted_in or None,
            )
            saved = self.store.add_review(review, task.copy(status=status))
            return review, saved, task.status

        review, task, previous = with_cas_retry(attempt)
        self._record(ActivityAction.REVIEW, f'Reviewed submission "{task.title}"', actor, task, {
            'reviewId': review.review_id,
            'markedEligible': task.status != previous,
        })
        if task.status != previous:
            notify_status_change(self.notifier, task.task_id, task.status)
        return review, task

    def approve(self, task_id: str, admin_id: str, actor_role: Role = None) -> Task:
        """Admin approves an ELIGIBLE submission. APPROVED is terminal."""
        actor = self._actor(admin_id, actor_role)

        def attempt() -> Task:
            task = self._load(task_id)
            SIMPLE_TRANSITIONS.resolve(task, TaskStatus.APPROVED, actor.role, admin_id)
            return self.store.update_task(task.copy(status=TaskStatus.APPROVED))

        task = with_cas_retry(attempt)
        self._record(ActivityAction.APPROVE, f'Approved submission "{task.title}"', actor, task,
                     {'reviewerId': task.claimed_by})
        notify_status_change(self.notifier, task.task_id, task.status)
        return task

    def transition(self, task_id: str, requested, actor_role: Role, actor_id: str,
                   extra: Optional[Dict[str, Any]] = None) -> Task:
        """
        Move a submission to `requested` through the declared transition table.

        CLAIMED goes through claim, ELIGIBLE through feedback (extra must carry
        `feedback`), APPROVED through approve.
        """
        extra = extra or {}
        destination = _parse_status(requested)
        task = self._load(task_id)
        rule = SIMPLE_TRANSITIONS.resolve(task, destination, actor_role, actor_id)
        SIMPLE_TRANSITIONS.validate_extra(rule, extra)

        if destination == TaskStatus.CLAIMED:
            return self.claim(task_id, actor_id, actor_role=actor_role)
        if destination == TaskStatus.ELIGIBLE:
            _, saved = self.submit_feedback(
                task_id, actor_id, extra['feedback'], mark_eligible=True,
                account_posted_in=extra.get('account_posted_in'), actor_role=actor_role,
            )
            return saved
        return self.approve(task_id, actor_id, actor_role=actor_role)

    def delete_task(self, task_id: str, actor_id: str, actor_role: Role) -> int:
        """
        Delete a submission and its reviews. Owner or admin only.

        Returns:
            Number of reviews removed with the task
        """
        task = self._load(task_id)
        if actor_role != Role.ADMIN and task.contributor_id != actor_id:
            raise PermissionDenied(
                'You can only delete your own submissions',
                role=getattr(actor_role, 'value', actor_role),
                current_status=task.status.value,
            )
        removed = self.store.delete_task(task_id)
        actor = self.store.get_worker(actor_id) or Worker(worker_id=actor_id, role=actor_role)
        self._record(ActivityAction.DELETE, f'Deleted submission "{task.title}"', actor, task,
                     {'reviewsDeleted': removed, 'status': task.status.value})
        return removed

    def release_worker(self, worker_id: str) -> List[str]:
        """
        Return every CLAIMED or ELIGIBLE submission bound to the worker to PENDING.

        Returns:
            Ids of the released tasks
        """
        released = []
        for task in self.store.list_tasks():
            if task.claimed_by != worker_id or task.status not in BOUND_TASK_STATUSES:
                continue
            saved = with_cas_retry(lambda: self._unbind(task.task_id, worker_id))
            if saved is None:
                continue
            released.append(saved.task_id)
            record_activity(self.activity_log, ActivityEvent.system(
                action=ActivityAction.RELEASE,
                description=f'Submission "{saved.title}" returned to the queue',
                target_id=saved.task_id,
                metadata={'workerId': worker_id, 'previousStatus': task.status.value},
            ))
            notify_status_change(self.notifier, saved.task_id, saved.status)

        if released:
            logger.info(f"Released {len(released)} tasks held by {worker_id}")
        return released

    # Helpers

    def _load(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound('Task', task_id)
        return task

    def _actor(self, actor_id: str, actor_role: Role = None) -> Worker:
        """The acting account. An explicit role overrides the stored one."""
        worker = self.store.get_worker(actor_id)
        if worker is None:
            if actor_role is None:
                raise NotFound('Worker', actor_id)
            return Worker(worker_id=actor_id, role=actor_role)
        if actor_role is not None:
            return worker.copy(role=actor_role)
        return worker

    def _unbind(self, task_id: str, worker_id: str) -> Optional[Task]:
        task = self.store.get_task(task_id)
        if task is None or task.claimed_by != worker_id or task.status not in BOUND_TASK_STATUSES:
            return None
        return self.store.update_task(task.copy(
            status=TaskStatus.PENDING,
            claimed_by=None,
            assigned_at=None,
        ))

    def _record(self, action: str, description: str, actor: Worker, task: Task, metadata: dict) -> None:
        record_activity(self.activity_log, ActivityEvent(
            action=action,
            description=description,
            actor_id=actor.worker_id,
            actor_name=actor.name or None,
            actor_role=getattr(actor.role, 'value', actor.role),
            target_id=task.task_id,
            target_type='submission',
            metadata=metadata,
        ))
