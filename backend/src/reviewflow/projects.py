"""
Extended project review workflow.

A project task is tested first, then reviewed. Tester and reviewer bindings
are independent and sticky: each is set the first time someone in that
role acts and is kept afterwards, so a CHANGES_REQUESTED round trip comes
back to the same reviewer.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from .activity_log import record_activity
from .assignment import AssignmentEngine
from .concurrency import with_cas_retry
from .directory import REVIEWER_POOL, TESTER_POOL
from .errors import NotFound, PermissionDenied, PreconditionFailed, ValidationError
from .logging import logger
from .models import (
    REVIEWABLE_STATUSES,
    ActivityAction,
    ActivityEvent,
    ProjectStatus,
    ProjectTask,
    Role,
    new_id,
)
from .notifier import notify_status_change
from .utils import utc_now_iso
from .workflow import Transition, TransitionTable, require_text

GITHUB_REPO_PATTERN = re.compile(r'^https?://github\.com/[\w-]+/[\w.-]+/?$')

REQUIRED_PROJECT_FIELDS = (
    'title', 'language', 'category', 'difficulty', 'description', 'github_repo', 'commit_hash',
)
EDITABLE_PROJECT_FIELDS = REQUIRED_PROJECT_FIELDS + ('issue_url',)

# Statuses a tester may report an outcome from
TESTER_SOURCES = frozenset({
    ProjectStatus.TASK_SUBMITTED,
    ProjectStatus.IN_TESTING,
    ProjectStatus.TASK_SUBMITTED_TO_PLATFORM,
    ProjectStatus.REWORK_DONE,
})

TESTER_ROLES = frozenset({Role.TESTER, Role.ADMIN})
REVIEWER_ROLES = frozenset({Role.REVIEWER, Role.ADMIN})
OWNER_ROLES = frozenset({Role.CONTRIBUTOR, Role.ADMIN})

# Which role fills which sticky binding
BINDING_ROLES = {'tester_id': Role.TESTER, 'reviewer_id': Role.REVIEWER}

# Pool an empty binding is auto-filled from
AUTO_ASSIGN_POOLS = {'tester_id': TESTER_POOL, 'reviewer_id': REVIEWER_POOL}


def _platform_submission(task, extra):
    return {
        'submitted_account': extra['submitted_account'],
        'task_link_submitted': extra['task_link_submitted'],
    }


def _task_link(task, extra):
    return {'task_link': extra['task_link']}


def _tester_feedback(task, extra):
    return {'tester_feedback': extra['feedback']}


def _changes_requested(task, extra):
    return {
        'reviewer_feedback': extra['feedback'],
        'has_changes_requested': True,
        'changes_done': False,
    }


def _rejection(task, extra):
    return {'rejection_reason': extra['rejection_reason']}


def _changes_addressed(task, extra):
    return {'changes_done': True}


PROJECT_TRANSITIONS = TransitionTable([
    # Automatic tester assignment only
    Transition(
        destination=ProjectStatus.IN_TESTING,
        sources=frozenset({ProjectStatus.TASK_SUBMITTED}),
        roles=frozenset({Role.SYSTEM}),
        action=ActivityAction.AUTO_ASSIGN,
        binds='tester_id',
        auto_assign='tester_id',
    ),
    Transition(
        destination=ProjectStatus.TASK_SUBMITTED_TO_PLATFORM,
        sources=frozenset({
            ProjectStatus.TASK_SUBMITTED, ProjectStatus.IN_TESTING, ProjectStatus.REWORK_DONE,
        }),
        roles=TESTER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='tester_id',
        required=('submitted_account', 'task_link_submitted'),
        effect=_platform_submission,
    ),
    Transition(
        destination=ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW,
        sources=TESTER_SOURCES,
        roles=TESTER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='tester_id',
        auto_assign='reviewer_id',
        required=('task_link',),
        effect=_task_link,
    ),
    Transition(
        destination=ProjectStatus.PENDING_REVIEW,
        sources=TESTER_SOURCES,
        roles=TESTER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='tester_id',
        auto_assign='reviewer_id',
    ),
    Transition(
        destination=ProjectStatus.REWORK,
        sources=TESTER_SOURCES,
        roles=TESTER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='tester_id',
        required=('feedback',),
        effect=_tester_feedback,
    ),
    Transition(
        destination=ProjectStatus.CHANGES_DONE,
        sources=frozenset({ProjectStatus.IN_TESTING}),
        roles=TESTER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='tester_id',
        guard=lambda task: task.changes_done,
        guard_message='Contributor has not addressed the requested changes yet',
    ),
    Transition(
        destination=ProjectStatus.CHANGES_REQUESTED,
        sources=REVIEWABLE_STATUSES,
        roles=REVIEWER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='reviewer_id',
        required=('feedback',),
        effect=_changes_requested,
    ),
    Transition(
        destination=ProjectStatus.FINAL_CHECKS,
        sources=REVIEWABLE_STATUSES,
        roles=REVIEWER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='reviewer_id',
    ),
    Transition(
        destination=ProjectStatus.REJECTED,
        sources=REVIEWABLE_STATUSES,
        roles=REVIEWER_ROLES,
        action=ActivityAction.PROJECT_TRANSITION,
        binds='reviewer_id',
        required=('rejection_reason',),
        effect=_rejection,
    ),
    Transition(
        destination=ProjectStatus.APPROVED,
        sources=REVIEWABLE_STATUSES | {ProjectStatus.FINAL_CHECKS},
        roles=frozenset({Role.ADMIN}),
        action=ActivityAction.APPROVE,
    ),
    Transition(
        destination=ProjectStatus.IN_TESTING,
        sources=frozenset({ProjectStatus.CHANGES_REQUESTED}),
        roles=OWNER_ROLES,
        action=ActivityAction.PROJECT_RESUBMIT,
        owner_only=True,
        effect=_changes_addressed,
    ),
    Transition(
        destination=ProjectStatus.REWORK_DONE,
        sources=frozenset({ProjectStatus.REWORK}),
        roles=OWNER_ROLES,
        action=ActivityAction.PROJECT_RESUBMIT,
        owner_only=True,
    ),
])

# Where a resubmission goes, keyed by the status holding the feedback
RESUBMIT_DESTINATIONS = {
    ProjectStatus.REWORK: ProjectStatus.REWORK_DONE,
    ProjectStatus.CHANGES_REQUESTED: ProjectStatus.IN_TESTING,
}


def _parse_status(value) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def _role_value(role) -> str:
    return getattr(role, 'value', role)


def validate_project_fields(fields: Dict[str, Any]) -> None:
    """Check the free-text and URL rules shared by create and resubmit."""
    require_text(fields, EDITABLE_PROJECT_FIELDS)
    description = fields.get('description')
    if description and not description.isascii():
        raise ValidationError('Description must contain only ASCII characters')
    github_repo = fields.get('github_repo')
    if github_repo and not GITHUB_REPO_PATTERN.match(github_repo):
        raise ValidationError('Invalid GitHub repository URL')


class ProjectWorkflow:
    """Lifecycle operations on project tasks."""

    def __init__(self, store, assignment: AssignmentEngine = None, activity_log=None, notifier=None):
        self.store = store
        self.activity_log = activity_log
        self.notifier = notifier
        self.assignment = assignment or AssignmentEngine(
            store, activity_log=activity_log, notifier=notifier
        )

    def create(self, contributor_id: str, payload: Dict[str, Any]) -> ProjectTask:
        """
        Store a new project task in TASK_SUBMITTED and try to hand it to a tester.

        Raises:
            ValidationError: missing or non-string fields, non-ASCII description
                or a repository URL that is not a GitHub repo
        """
        validate_project_fields(payload)
        missing = [f for f in REQUIRED_PROJECT_FIELDS if not str(payload.get(f) or '').strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        task = self.store.put_project_task(ProjectTask(
            task_id=new_id(),
            contributor_id=contributor_id,
            title=payload['title'],
            language=payload['language'],
            category=payload['category'],
            difficulty=payload['difficulty'],
            description=payload['description'],
            github_repo=payload['github_repo'],
            commit_hash=payload['commit_hash'],
            issue_url=payload.get('issue_url') or '',
        ))
        logger.info(f"Project task {task.task_id} submitted by {contributor_id}")
        self._record(ActivityAction.PROJECT_SUBMIT, f'Submitted project task "{task.title}"',
                     contributor_id, Role.CONTRIBUTOR, task, {'githubRepo': task.github_repo})

        self.assignment.assign_tester(task.task_id)
        return self.store.get_project_task(task.task_id)

    def transition(self, task_id: str, requested, actor_role: Role, actor_id: str,
                   extra: Optional[Dict[str, Any]] = None) -> ProjectTask:
        """
        Move a project task to `requested` if the transition table allows it.

        Sets the actor's sticky binding when it is still empty, and assigns a
        reviewer in the same write when the move hands the task to review.

        Raises:
            PermissionDenied: role may not cause this move
            PreconditionFailed: current status is not an allowed source
            ValidationError: a required extra field is missing
        """
        return self._apply(task_id, _parse_status(requested), actor_role, actor_id, extra or {})

    # Tester outcomes

    def submit_to_platform(self, task_id: str, actor_id: str, actor_role: Role,
                           submitted_account: str, task_link_submitted: str) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.TASK_SUBMITTED_TO_PLATFORM, actor_role, actor_id, {
            'submitted_account': submitted_account,
            'task_link_submitted': task_link_submitted,
        })

    def mark_eligible(self, task_id: str, actor_id: str, actor_role: Role, task_link: str) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW, actor_role, actor_id,
                               {'task_link': task_link})

    def mark_pending_review(self, task_id: str, actor_id: str, actor_role: Role,
                            account_posted_in: str = None) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.PENDING_REVIEW, actor_role, actor_id,
                               {'account_posted_in': account_posted_in})

    def send_tester_feedback(self, task_id: str, actor_id: str, actor_role: Role, feedback: str) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.REWORK, actor_role, actor_id, {'feedback': feedback})

    def mark_changes_done(self, task_id: str, actor_id: str, actor_role: Role) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.CHANGES_DONE, actor_role, actor_id)

    # Reviewer outcomes

    def request_changes(self, task_id: str, actor_id: str, actor_role: Role, feedback: str) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.CHANGES_REQUESTED, actor_role, actor_id,
                               {'feedback': feedback})

    def mark_final_checks(self, task_id: str, actor_id: str, actor_role: Role) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.FINAL_CHECKS, actor_role, actor_id)

    def reject(self, task_id: str, actor_id: str, actor_role: Role, rejection_reason: str) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.REJECTED, actor_role, actor_id,
                               {'rejection_reason': rejection_reason})

    def approve(self, task_id: str, actor_id: str, actor_role: Role) -> ProjectTask:
        return self.transition(task_id, ProjectStatus.APPROVED, actor_role, actor_id)

    # Contributor actions

    def resubmit(self, task_id: str, actor_role: Role, actor_id: str,
                 updates: Optional[Dict[str, Any]] = None) -> ProjectTask:
        """
        Apply the contributor's edits and send the task back after feedback.

        REWORK goes to REWORK_DONE; CHANGES_REQUESTED goes back to IN_TESTING
        with changes_done set. Empty update values are ignored.
        """
        edits = {
            name: value for name, value in (updates or {}).items()
            if name in EDITABLE_PROJECT_FIELDS and str(value or '').strip()
        }
        validate_project_fields(edits)

        task = self._load(task_id)
        destination = RESUBMIT_DESTINATIONS.get(task.status)
        if destination is None:
            raise PreconditionFailed(
                'Task does not have feedback to address',
                current_status=task.status.value,
                allowed_statuses=[s.value for s in RESUBMIT_DESTINATIONS],
            )
        return self._apply(task_id, destination, actor_role, actor_id, {}, edits)

    def delete(self, task_id: str, actor_id: str, actor_role: Role) -> None:
        """Delete a project task. Owner or admin only."""
        task = self._load(task_id)
        if actor_role != Role.ADMIN and task.contributor_id != actor_id:
            raise PermissionDenied(
                'You can only delete your own submissions',
                role=_role_value(actor_role),
                current_status=task.status.value,
            )
        self.store.delete_project_task(task_id)
        self._record(ActivityAction.DELETE, f'Deleted project task "{task.title}"',
                     actor_id, actor_role, task, {'status': task.status.value})

    def release_worker(self, worker_id: str) -> List[str]:
        """
        Clear tester and reviewer bindings held by a worker who is leaving.

        An IN_TESTING task that loses its tester goes back to TASK_SUBMITTED
        so the tester queue picks it up again.

        Returns:
            Ids of the project tasks that were touched
        """
        released = []
        for task in self.store.list_project_tasks():
            if worker_id not in (task.tester_id, task.reviewer_id):
                continue
            saved = with_cas_retry(lambda: self._unbind(task.task_id, worker_id))
            if saved is None:
                continue
            released.append(saved.task_id)
            record_activity(self.activity_log, ActivityEvent.system(
                action=ActivityAction.RELEASE,
                description=f'Project task "{saved.title}" released from a departing worker',
                target_id=saved.task_id,
                target_type='project_task',
                metadata={'workerId': worker_id, 'status': saved.status.value},
            ))
            if saved.status != task.status:
                notify_status_change(self.notifier, saved.task_id, saved.status)

        if released:
            logger.info(f"Released {len(released)} project tasks held by {worker_id}")
        return released

    # Helpers

    def _load(self, task_id: str) -> ProjectTask:
        task = self.store.get_project_task(task_id)
        if task is None:
            raise NotFound('ProjectTask', task_id)
        return task

    def _apply(self, task_id: str, destination: ProjectStatus, actor_role: Role, actor_id: str,
               extra: Dict[str, Any], edits: Optional[Dict[str, Any]] = None) -> ProjectTask:
        def attempt() -> Tuple[ProjectTask, ProjectStatus, Transition, Any]:
            task = self._load(task_id)
            rule = PROJECT_TRANSITIONS.resolve(task, destination, actor_role, actor_id)
            PROJECT_TRANSITIONS.validate_extra(rule, extra)

            changes = dict(edits or {})
            changes.update(rule.effect(task, extra))
            changes['status'] = destination
            if extra.get('account_posted_in'):
                changes['account_posted_in'] = extra['account_posted_in']

            now = utc_now_iso()
            if rule.binds and getattr(task, rule.binds) is None and actor_role == BINDING_ROLES[rule.binds]:
                changes[rule.binds] = actor_id
                changes[rule.binds.replace('_id', '_assigned_at')] = now

            assignee = None
            if rule.auto_assign and getattr(task, rule.auto_assign) is None:
                assignee = self.assignment.choose(AUTO_ASSIGN_POOLS[rule.auto_assign])
                if assignee is not None:
                    changes[rule.auto_assign] = assignee.worker_id
                    changes[rule.auto_assign.replace('_id', '_assigned_at')] = now
                elif rule.auto_assign == rule.binds:
                    # The move itself is the assignment; nobody to bind means no move
                    raise PreconditionFailed(
                        f"No {BINDING_ROLES[rule.binds].value.lower()} is available for task {task_id}",
                        current_status=task.status.value,
                    )

            saved = self.store.update_project_task(task.copy(**changes))
            return saved, task.status, rule, assignee

        task, previous, rule, assignee = with_cas_retry(attempt)
        logger.info(f"Project task {task_id}: {previous.value} -> {task.status.value}")
        self._record(rule.action, f'Project task "{task.title}" moved to {task.status.value}',
                     actor_id, actor_role, task, {'from': previous.value, 'to': task.status.value})
        if assignee is not None:
            self.assignment.record_assignment(task.task_id, task.title, assignee,
                                              AUTO_ASSIGN_POOLS[rule.auto_assign])
        notify_status_change(self.notifier, task.task_id, task.status)
        return task

    def _unbind(self, task_id: str, worker_id: str) -> Optional[ProjectTask]:
        task = self.store.get_project_task(task_id)
        if task is None:
            return None
        changes = {}
        if task.tester_id == worker_id:
            changes.update(tester_id=None, tester_assigned_at=None)
            if task.status == ProjectStatus.IN_TESTING and not task.reviewer_id:
                changes['status'] = ProjectStatus.TASK_SUBMITTED
        if task.reviewer_id == worker_id:
            changes.update(reviewer_id=None, reviewer_assigned_at=None)
        if not changes:
            return None
        return self.store.update_project_task(task.copy(**changes))

    def _record(self, action: str, description: str, actor_id: str, actor_role, task: ProjectTask,
                metadata: dict) -> None:
        actor = self.store.get_worker(actor_id)
        record_activity(self.activity_log, ActivityEvent(
            action=action,
            description=description,
            actor_id=actor_id,
            actor_name=actor.name if actor else None,
            actor_role=_role_value(actor_role),
            target_id=task.task_id,
            target_type='project_task',
            metadata=metadata,
        ))
