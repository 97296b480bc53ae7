"""
ReviewService: the single entry point the Lambda handlers call.

Wires a store, an activity log and a notifier into the engines. Handlers
get a process-wide instance through get_service(); tests build their own
over a MemoryStore.
"""
from functools import lru_cache
from typing import Any, Dict, Optional

from .activity_log import DynamoActivityLog
from .assignment import AssignmentEngine
from .directory import WorkerPoolDirectory
from .dynamo import DynamoStore
from .models import Role
from .notifier import SqsNotifier
from .projects import ProjectWorkflow
from .redistribution import RedistributionEngine
from .submissions import SubmissionWorkflow
from .workers import WorkerService


class ReviewService:
    """Facade over assignment, redistribution and both workflows."""

    def __init__(self, store, activity_log=None, notifier=None):
        self.store = store
        self.activity_log = activity_log
        self.notifier = notifier
        self.directory = WorkerPoolDirectory(store)
        self.assignment = AssignmentEngine(store, self.directory, activity_log, notifier)
        self.redistribution = RedistributionEngine(store, self.assignment, self.directory, activity_log, notifier)
        self.submissions = SubmissionWorkflow(store, self.assignment, activity_log, notifier)
        self.projects = ProjectWorkflow(store, self.assignment, activity_log, notifier)
        self.workers = WorkerService(store, self.submissions, self.projects, self.redistribution, activity_log)

    @classmethod
    def from_config(cls) -> 'ReviewService':
        """Service over the DynamoDB tables and SQS queue named in config."""
        store = DynamoStore()
        return cls(store, DynamoActivityLog(resource=store.dynamodb), SqsNotifier())

    # Simple submissions

    def create_task(self, contributor_id: str, payload: Dict[str, Any], actor_role: Role = None):
        return self.submissions.create_task(contributor_id, payload, actor_role)

    def assign(self, task_id: str) -> Optional[str]:
        return self.assignment.assign(task_id)

    def assign_queued(self) -> int:
        return self.redistribution.assign_queued()

    def redistribute_all(self) -> int:
        return self.redistribution.redistribute_all()

    def claim(self, task_id: str, admin_id: str, actor_role: Role = None):
        return self.submissions.claim(task_id, admin_id, actor_role)

    def submit_feedback(self, task_id: str, reviewer_id: str, feedback: str, mark_eligible: bool,
                        account_posted_in: str = None, actor_role: Role = None):
        return self.submissions.submit_feedback(
            task_id, reviewer_id, feedback, mark_eligible, account_posted_in, actor_role
        )

    def approve(self, task_id: str, admin_id: str, actor_role: Role = None):
        return self.submissions.approve(task_id, admin_id, actor_role)

    def delete_task(self, task_id: str, actor_id: str, actor_role: Role) -> int:
        return self.submissions.delete_task(task_id, actor_id, actor_role)

    def transition(self, task_id: str, requested, actor_role: Role, actor_id: str,
                   extra: Optional[Dict[str, Any]] = None):
        """
        Generic status change. Simple submissions and project tasks share the
        id space, so the id decides which workflow handles the request.
        """
        if self.store.get_task(task_id) is not None:
            return self.submissions.transition(task_id, requested, actor_role, actor_id, extra)
        return self.projects.transition(task_id, requested, actor_role, actor_id, extra)

    # Project tasks

    def create_project_task(self, contributor_id: str, payload: Dict[str, Any]):
        return self.projects.create(contributor_id, payload)

    def assign_tester(self, task_id: str) -> Optional[str]:
        return self.assignment.assign_tester(task_id)

    def assign_reviewer(self, task_id: str) -> Optional[str]:
        return self.assignment.assign_reviewer(task_id)

    def assign_queued_projects(self) -> int:
        return self.redistribution.assign_queued_projects()

    def transition_project(self, task_id: str, requested, actor_role: Role, actor_id: str,
                           extra: Optional[Dict[str, Any]] = None):
        return self.projects.transition(task_id, requested, actor_role, actor_id, extra)

    def resubmit_project_task(self, task_id: str, actor_role: Role, actor_id: str,
                              updates: Optional[Dict[str, Any]] = None):
        return self.projects.resubmit(task_id, actor_role, actor_id, updates)

    def delete_project_task(self, task_id: str, actor_id: str, actor_role: Role) -> None:
        self.projects.delete(task_id, actor_id, actor_role)

    # Workers

    def register_worker(self, worker_id: str, role, name: str = '', email: str = ''):
        return self.workers.register_worker(worker_id, role, name, email)

    def approve_worker(self, worker_id: str, admin_id: str):
        return self.workers.approve_worker(worker_id, admin_id)

    def set_availability(self, worker_id: str, available: bool, actor_id: str = None,
                         actor_role: Role = Role.ADMIN):
        return self.workers.set_availability(worker_id, available, actor_id, actor_role)

    def toggle_availability(self, worker_id: str, actor_id: str = None, actor_role: Role = Role.ADMIN):
        return self.workers.toggle_availability(worker_id, actor_id, actor_role)

    def switch_role(self, worker_id: str, new_role, admin_id: str):
        return self.workers.switch_role(worker_id, new_role, admin_id)

    def delete_worker(self, worker_id: str, actor_id: str, actor_role: Role = Role.ADMIN):
        return self.workers.delete_worker(worker_id, actor_id, actor_role)


@lru_cache(maxsize=1)
def get_service() -> ReviewService:
    """Process-wide service, built on first use so cold starts share clients."""
    return ReviewService.from_config()
