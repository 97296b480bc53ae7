"""
Data models and status constants for the review platform.

Simple submissions: PENDING → CLAIMED → ELIGIBLE → APPROVED
Project tasks: TASK_SUBMITTED → IN_TESTING → (tester outcome) → reviewer
outcome → APPROVED / REJECTED, with REWORK and CHANGES_REQUESTED loops.
"""
import dataclasses
import enum
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from .utils import utc_now_iso


class Role(str, enum.Enum):
    """Account roles. SYSTEM marks automated actions in the activity log."""
    ADMIN = 'ADMIN'
    REVIEWER = 'REVIEWER'
    TESTER = 'TESTER'
    CONTRIBUTOR = 'CONTRIBUTOR'
    SYSTEM = 'SYSTEM'


class TaskStatus(str, enum.Enum):
    """Simple submission lifecycle statuses."""
    PENDING = 'PENDING'
    CLAIMED = 'CLAIMED'
    ELIGIBLE = 'ELIGIBLE'
    APPROVED = 'APPROVED'


class ProjectStatus(str, enum.Enum):
    """Project task lifecycle statuses."""
    TASK_SUBMITTED = 'TASK_SUBMITTED'
    IN_TESTING = 'IN_TESTING'
    TASK_SUBMITTED_TO_PLATFORM = 'TASK_SUBMITTED_TO_PLATFORM'
    ELIGIBLE_FOR_MANUAL_REVIEW = 'ELIGIBLE_FOR_MANUAL_REVIEW'
    PENDING_REVIEW = 'PENDING_REVIEW'
    REWORK = 'REWORK'
    REWORK_DONE = 'REWORK_DONE'
    CHANGES_REQUESTED = 'CHANGES_REQUESTED'
    CHANGES_DONE = 'CHANGES_DONE'
    FINAL_CHECKS = 'FINAL_CHECKS'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'


# Statuses that count toward a worker's load
OPEN_TASK_STATUSES = frozenset({
    TaskStatus.PENDING,
    TaskStatus.CLAIMED,
    TaskStatus.ELIGIBLE,
})

BOUND_TASK_STATUSES = frozenset({TaskStatus.CLAIMED, TaskStatus.ELIGIBLE})

TESTER_PHASE_STATUSES = frozenset({
    ProjectStatus.IN_TESTING,
    ProjectStatus.TASK_SUBMITTED_TO_PLATFORM,
    ProjectStatus.REWORK,
    ProjectStatus.REWORK_DONE,
})

REVIEWER_PHASE_STATUSES = frozenset({
    ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW,
    ProjectStatus.PENDING_REVIEW,
    ProjectStatus.CHANGES_REQUESTED,
    ProjectStatus.CHANGES_DONE,
    ProjectStatus.FINAL_CHECKS,
})

# A reviewer may act on a project task only from these statuses
REVIEWABLE_STATUSES = frozenset({
    ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW,
    ProjectStatus.PENDING_REVIEW,
    ProjectStatus.CHANGES_DONE,
})

TERMINAL_PROJECT_STATUSES = frozenset({ProjectStatus.APPROVED, ProjectStatus.REJECTED})


class ActivityAction:
    """Activity log action names."""
    UPLOAD = 'UPLOAD'
    AUTO_ASSIGN = 'AUTO_ASSIGN'
    MANUAL_CLAIM = 'MANUAL_CLAIM'
    REVIEW = 'REVIEW'
    APPROVE = 'APPROVE'
    DELETE = 'DELETE'
    RELEASE = 'RELEASE'
    REDISTRIBUTE = 'REDISTRIBUTE'
    PROJECT_SUBMIT = 'PROJECT_SUBMIT'
    PROJECT_TRANSITION = 'PROJECT_TRANSITION'
    PROJECT_RESUBMIT = 'PROJECT_RESUBMIT'
    REGISTER_WORKER = 'REGISTER_WORKER'
    APPROVE_WORKER = 'APPROVE_WORKER'
    TOGGLE_AVAILABILITY = 'TOGGLE_AVAILABILITY'
    SWITCH_ROLE = 'SWITCH_ROLE'
    DELETE_USER = 'DELETE_USER'


SYSTEM_ACTOR_ID = '00000000-0000-0000-0000-000000000000'


def new_id() -> str:
    return str(uuid.uuid4())


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


class Record:
    """
    Mixin translating dataclass records to and from DynamoDB items.

    Items use camelCase attribute names. None values are omitted on write.
    """
    _enums: Dict[str, Any] = {}

    def to_item(self) -> Dict[str, Any]:
        item = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, enum.Enum):
                value = value.value
            item[_camel(f.name)] = value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        kwargs = {}
        for f in dataclasses.fields(cls):
            key = _camel(f.name)
            if key not in item:
                continue
            value = item[key]
            if f.name in cls._enums and value is not None:
                value = cls._enums[f.name](value)
            elif isinstance(value, Decimal):
                # DynamoDB returns numbers as Decimal
                value = int(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    def copy(self, **changes):
        return dataclasses.replace(self, **changes)


@dataclass
class Worker(Record):
    """A tester, reviewer, admin or contributor account."""
    worker_id: str
    role: Role
    name: str = ''
    email: str = ''
    eligible: bool = False
    available: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    version: int = 0

    _enums = {'role': Role}


@dataclass
class Task(Record):
    """Simple single-stage submission."""
    task_id: str
    contributor_id: str
    title: str = ''
    domain: str = ''
    language: str = ''
    file_name: str = ''
    file_url: str = ''
    status: TaskStatus = TaskStatus.PENDING
    claimed_by: Optional[str] = None
    assigned_at: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    version: int = 0

    _enums = {'status': TaskStatus}


@dataclass
class ProjectTask(Record):
    """Multi-stage project review item with tester and reviewer bindings."""
    task_id: str
    contributor_id: str
    title: str = ''
    language: str = ''
    category: str = ''
    difficulty: str = ''
    description: str = ''
    github_repo: str = ''
    commit_hash: str = ''
    issue_url: str = ''
    status: ProjectStatus = ProjectStatus.TASK_SUBMITTED
    tester_id: Optional[str] = None
    reviewer_id: Optional[str] = None
    tester_assigned_at: Optional[str] = None
    reviewer_assigned_at: Optional[str] = None
    tester_feedback: Optional[str] = None
    reviewer_feedback: Optional[str] = None
    rejection_reason: Optional[str] = None
    task_link: Optional[str] = None
    submitted_account: Optional[str] = None
    task_link_submitted: Optional[str] = None
    account_posted_in: Optional[str] = None
    changes_done: bool = False
    has_changes_requested: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    version: int = 0

    _enums = {'status': ProjectStatus}


@dataclass
class Review(Record):
    """Feedback left by a reviewer on a simple submission. Immutable."""
    review_id: str
    task_id: str
    reviewer_id: str
    feedback: str
    account_posted_in: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)


@dataclass
class ActivityEvent(Record):
    """Append-only audit record."""
    action: str
    description: str
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def system(cls, action: str, description: str, target_id: str = None,
               target_type: str = 'submission', metadata: dict = None) -> 'ActivityEvent':
        """Event emitted by automated assignment rather than a person."""
        return cls(
            action=action,
            description=description,
            actor_id=SYSTEM_ACTOR_ID,
            actor_name='System',
            actor_role=Role.SYSTEM.value,
            target_id=target_id,
            target_type=target_type,
            metadata=metadata or {},
        )
