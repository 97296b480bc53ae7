"""
Shared fixtures: an in-memory service plus factories for workers and tasks.
"""
import itertools
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from reviewflow.activity_log import MemoryActivityLog  # noqa: E402
from reviewflow.memory_store import MemoryStore  # noqa: E402
from reviewflow.models import ProjectStatus, ProjectTask, Role, Task, TaskStatus, Worker  # noqa: E402
from reviewflow.notifier import MemoryNotifier  # noqa: E402
from reviewflow.service import ReviewService  # noqa: E402


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def activity_log():
    return MemoryActivityLog()


@pytest.fixture
def notifier():
    return MemoryNotifier()


@pytest.fixture
def service(store, activity_log, notifier):
    return ReviewService(store, activity_log, notifier)


@pytest.fixture
def make_worker(store):
    """Register a worker directly in the store, in call order."""
    counter = itertools.count()

    def _make(worker_id, role=Role.REVIEWER, eligible=True, available=True):
        n = next(counter)
        return store.put_worker(Worker(
            worker_id=worker_id,
            role=role,
            name=worker_id.title(),
            email=f'{worker_id}@example.com',
            eligible=eligible,
            available=available,
            created_at=f'2024-01-01T00:00:{n:02d}+00:00',
        ))
    return _make


@pytest.fixture
def make_task(store):
    """Store a simple submission; later calls are newer."""
    counter = itertools.count()

    def _make(status=TaskStatus.PENDING, claimed_by=None, contributor_id='contrib-1', task_id=None):
        n = next(counter)
        return store.put_task(Task(
            task_id=task_id or f'task-{n:03d}',
            contributor_id=contributor_id,
            title=f'Task {n}',
            domain='web',
            language='python',
            file_name=f'task-{n}.zip',
            status=status,
            claimed_by=claimed_by,
            assigned_at='2024-02-01T00:00:00+00:00' if claimed_by else None,
            created_at=f'2024-02-01T00:{n // 60:02d}:{n % 60:02d}+00:00',
        ))
    return _make


@pytest.fixture
def make_project_task(store):
    """Store a project task; later calls are newer."""
    counter = itertools.count()

    def _make(status=ProjectStatus.TASK_SUBMITTED, tester_id=None, reviewer_id=None,
              contributor_id='contrib-1', **fields):
        n = next(counter)
        return store.put_project_task(ProjectTask(
            task_id=f'project-{n:03d}',
            contributor_id=contributor_id,
            title=f'Project {n}',
            language='python',
            category='bugfix',
            difficulty='medium',
            description='Fix the flaky retry loop',
            github_repo='https://github.com/acme/widgets',
            commit_hash='abc123',
            status=status,
            tester_id=tester_id,
            reviewer_id=reviewer_id,
            created_at=f'2024-03-01T00:{n // 60:02d}:{n % 60:02d}+00:00',
            **fields,
        ))
    return _make


@pytest.fixture
def project_payload():
    return {
        'title': 'Retry loop',
        'language': 'python',
        'category': 'bugfix',
        'difficulty': 'medium',
        'description': 'Fix the flaky retry loop in the HTTP client',
        'github_repo': 'https://github.com/acme/widgets',
        'commit_hash': 'abc123',
        'issue_url': 'https://github.com/acme/widgets/issues/7',
    }
