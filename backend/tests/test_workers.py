"""
Tests for worker administration.
"""
import threading
from unittest.mock import patch

import pytest

from reviewflow.errors import LockHeld, NotFound, PermissionDenied, PreconditionFailed, ValidationError
from reviewflow.models import ActivityAction, ProjectStatus, Role, TaskStatus
from reviewflow.redistribution import REDISTRIBUTE_LOCK


class TestRegisterAndApprove:
    """Tests for register_worker and approve_worker."""

    def test_contributors_start_eligible(self, service, activity_log):
        worker = service.register_worker('c1', 'CONTRIBUTOR', name='Cara', email='cara@example.com')

        assert worker.eligible is True
        assert worker.available is False
        assert activity_log.events[-1].action == ActivityAction.REGISTER_WORKER

    def test_testers_wait_for_approval(self, service):
        worker = service.register_worker('t1', Role.TESTER)

        assert worker.eligible is False

    def test_duplicate_registration(self, service):
        service.register_worker('c1', Role.CONTRIBUTOR)

        with pytest.raises(PreconditionFailed):
            service.register_worker('c1', Role.CONTRIBUTOR)

    def test_invalid_roles(self, service):
        with pytest.raises(ValidationError):
            service.register_worker('x', 'JANITOR')
        with pytest.raises(ValidationError):
            service.register_worker('x', Role.SYSTEM)

    def test_approve_tester(self, service, make_worker, activity_log):
        make_worker('admin', role=Role.ADMIN)
        make_worker('t1', role=Role.TESTER, eligible=False)

        worker = service.approve_worker('t1', 'admin')

        assert worker.eligible is True
        assert service.store.get_worker('t1').eligible is True
        assert activity_log.events[-1].action == ActivityAction.APPROVE_WORKER
        assert activity_log.events[-1].actor_id == 'admin'

    def test_approve_contributor_is_refused(self, service, make_worker):
        make_worker('c1', role=Role.CONTRIBUTOR)

        with pytest.raises(PreconditionFailed):
            service.approve_worker('c1', 'admin')

    def test_approve_unknown(self, service):
        with pytest.raises(NotFound):
            service.approve_worker('ghost', 'admin')


class TestAvailability:
    """Tests for set_availability and toggle_availability."""

    def test_coming_online_rebalances(self, service, make_worker, make_task, activity_log):
        make_worker('r1')
        make_worker('r2', available=False)
        for _ in range(4):
            make_task(status=TaskStatus.CLAIMED, claimed_by='r1')

        result = service.toggle_availability('r2', 'admin')

        assert result['worker'].available is True
        assert result['tasksRedistributed'] == 2
        owners = sorted(t.claimed_by for t in service.store.list_tasks())
        assert owners == ['r1', 'r1', 'r2', 'r2']

        event = activity_log.events[-1]
        assert event.action == ActivityAction.TOGGLE_AVAILABILITY
        assert event.metadata == {'status': 'ON', 'tasksRedistributed': 2}
        assert event.target_id == 'r2'

    def test_going_offline_keeps_tasks(self, service, make_worker, make_task, activity_log):
        make_worker('r1')
        make_worker('r2')
        task = make_task(status=TaskStatus.CLAIMED, claimed_by='r1')

        result = service.toggle_availability('r1', 'admin')

        assert result == {'worker': service.store.get_worker('r1'), 'tasksRedistributed': 0}
        assert result['worker'].available is False
        assert service.store.get_task(task.task_id).claimed_by == 'r1'
        assert activity_log.events[-1].metadata == {'status': 'OFF'}

    def test_tester_online_drains_project_queue(self, service, make_worker, make_project_task):
        make_worker('t1', role=Role.TESTER, available=False)
        queued = [make_project_task() for _ in range(2)]

        result = service.set_availability('t1', True, 'admin')

        assert result['tasksRedistributed'] == 2
        for task in queued:
            saved = service.store.get_project_task(task.task_id)
            assert saved.status == ProjectStatus.IN_TESTING
            assert saved.tester_id == 't1'

    def test_unchanged_availability_is_a_no_op(self, service, make_worker, activity_log):
        make_worker('r1')

        result = service.set_availability('r1', True, 'admin')

        assert result['tasksRedistributed'] == 0
        assert activity_log.events == []

    def test_only_workers_who_take_work(self, service, make_worker):
        make_worker('c1', role=Role.CONTRIBUTOR)

        with pytest.raises(PreconditionFailed) as exc:
            service.toggle_availability('c1', 'admin')
        assert 'tester, reviewer or admin' in str(exc.value)

    def test_admin_online_receives_submissions(self, service, make_worker):
        make_worker('c1', role=Role.CONTRIBUTOR)
        admin = service.register_worker('adm', 'ADMIN', name='Ada')
        assert admin.eligible is True
        assert admin.available is False

        result = service.set_availability('adm', True, 'adm', Role.ADMIN)
        assert result['worker'].available is True

        task = service.create_task('c1', {
            'title': 'Parser fix', 'domain': 'compilers', 'language': 'python', 'file_name': 'fix.zip',
        })

        assert task.status == TaskStatus.CLAIMED
        assert task.claimed_by == 'adm'

    def test_waits_for_running_redistribution(self, service, make_worker, make_task):
        make_worker('r1')
        make_worker('r2', available=False)
        for _ in range(4):
            make_task(status=TaskStatus.CLAIMED, claimed_by='r1')
        holding = threading.Event()
        finished = threading.Event()

        def running_redistribution():
            with service.store.lock(REDISTRIBUTE_LOCK):
                holding.set()
                finished.wait(timeout=5)

        holder = threading.Thread(target=running_redistribution)
        holder.start()
        assert holding.wait(timeout=5)
        threading.Timer(0.2, finished.set).start()

        result = service.toggle_availability('r2', 'admin')
        holder.join()

        assert result['tasksRedistributed'] == 2
        owners = sorted(t.claimed_by for t in service.store.list_tasks())
        assert owners == ['r1', 'r1', 'r2', 'r2']

    def test_retries_until_lock_is_free(self, service, make_worker):
        make_worker('r2', available=False)

        with patch.object(service.redistribution, 'redistribute_all',
                          side_effect=[LockHeld(REDISTRIBUTE_LOCK), LockHeld(REDISTRIBUTE_LOCK), 3]) as run:
            result = service.toggle_availability('r2', 'admin')

        assert run.call_count == 3
        assert result['tasksRedistributed'] == 3

    def test_lock_held_past_wait_skips_rebalance(self, service, make_worker, make_task):
        service.workers.lock_wait_seconds = 0.2
        make_worker('r1')
        make_worker('r2', available=False)
        make_task(status=TaskStatus.CLAIMED, claimed_by='r1')
        make_task(status=TaskStatus.CLAIMED, claimed_by='r1')

        with service.store.lock(REDISTRIBUTE_LOCK):
            result = service.toggle_availability('r2', 'admin')

        assert result['worker'].available is True
        assert result['tasksRedistributed'] == 0


class TestSwitchRole:
    """Tests for switch_role."""

    def test_becoming_tester_revokes_eligibility(self, service, make_worker, activity_log):
        make_worker('r1')

        worker = service.switch_role('r1', 'TESTER', 'admin')

        assert worker.role == Role.TESTER
        assert worker.eligible is False
        assert activity_log.events[-1].metadata == {'oldRole': 'REVIEWER', 'newRole': 'TESTER'}

    def test_becoming_contributor_grants_eligibility(self, service, make_worker):
        make_worker('t1', role=Role.TESTER, eligible=False)

        assert service.switch_role('t1', Role.CONTRIBUTOR, 'admin').eligible is True

    def test_tester_to_tester_keeps_eligibility(self, service, make_worker):
        make_worker('t1', role=Role.TESTER)

        assert service.switch_role('t1', Role.TESTER, 'admin').eligible is True

    def test_reviewer_keeps_eligibility(self, service, make_worker):
        make_worker('t1', role=Role.TESTER)

        assert service.switch_role('t1', Role.REVIEWER, 'admin').eligible is True

    def test_invalid_role(self, service, make_worker):
        make_worker('t1', role=Role.TESTER)

        with pytest.raises(ValidationError):
            service.switch_role('t1', 'OWNER', 'admin')


class TestDeleteWorker:
    """Tests for delete_worker."""

    def test_unavailable_reviewer_tasks_return_to_queue(self, service, make_worker, make_task, activity_log):
        make_worker('admin', role=Role.ADMIN, available=False)
        make_worker('r1', available=False)
        make_worker('r2')
        tasks = [make_task(status=TaskStatus.CLAIMED, claimed_by='r1') for _ in range(2)]

        summary = service.delete_worker('r1', 'admin')

        assert summary['assignmentsUnassigned'] == 2
        assert service.store.get_worker('r1') is None
        for task in tasks:
            saved = service.store.get_task(task.task_id)
            assert saved.status == TaskStatus.PENDING
            assert saved.claimed_by is None
        event = activity_log.events[-1]
        assert event.action == ActivityAction.DELETE_USER
        assert event.metadata['userRole'] == 'REVIEWER'

    def test_cannot_delete_self(self, service, make_worker):
        make_worker('admin', role=Role.ADMIN)

        with pytest.raises(PermissionDenied):
            service.delete_worker('admin', 'admin')

    def test_cannot_delete_admin(self, service, make_worker):
        make_worker('admin', role=Role.ADMIN)
        make_worker('admin-2', role=Role.ADMIN)

        with pytest.raises(PermissionDenied):
            service.delete_worker('admin-2', 'admin')
        assert service.store.get_worker('admin-2') is not None

    def test_unknown_worker(self, service):
        with pytest.raises(NotFound):
            service.delete_worker('ghost', 'admin')

    def test_contributor_work_is_deleted(self, service, make_worker, make_task, make_project_task):
        make_worker('admin', role=Role.ADMIN, available=False)
        make_worker('c1', role=Role.CONTRIBUTOR)
        make_worker('r1')
        task = make_task(status=TaskStatus.CLAIMED, claimed_by='r1', contributor_id='c1')
        service.submit_feedback(task.task_id, 'r1', 'Nice', mark_eligible=False)
        make_task(contributor_id='someone-else')
        make_project_task(contributor_id='c1')

        summary = service.delete_worker('c1', 'admin')

        assert summary['submissionsDeleted'] == 1
        assert summary['reviewsDeleted'] == 1
        assert summary['projectTasksDeleted'] == 1
        assert [t.contributor_id for t in service.store.list_tasks()] == ['someone-else']
        assert service.store.list_project_tasks() == []

    def test_departing_tester_releases_project_tasks(self, service, make_worker, make_project_task):
        make_worker('admin', role=Role.ADMIN)
        make_worker('t1', role=Role.TESTER)
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        summary = service.delete_worker('t1', 'admin')

        assert summary['projectAssignmentsReleased'] == 1
        saved = service.store.get_project_task(task.task_id)
        assert saved.status == ProjectStatus.TASK_SUBMITTED
        assert saved.tester_id is None
