"""
Tests for the extended project review workflow.
"""
import pytest

from reviewflow.errors import PermissionDenied, PreconditionFailed, ValidationError
from reviewflow.models import (
    REVIEWABLE_STATUSES,
    SYSTEM_ACTOR_ID,
    TERMINAL_PROJECT_STATUSES,
    ActivityAction,
    ProjectStatus,
    Role,
)
from reviewflow.projects import PROJECT_TRANSITIONS


@pytest.fixture
def team(make_worker):
    make_worker('admin', role=Role.ADMIN)
    make_worker('contrib-1', role=Role.CONTRIBUTOR)
    make_worker('contrib-2', role=Role.CONTRIBUTOR)
    make_worker('t1', role=Role.TESTER)
    make_worker('r1', role=Role.REVIEWER)
    make_worker('r2', role=Role.REVIEWER)


class TestTransitionTable:
    """Sanity checks on the declared project table."""

    def test_approval_is_admin_only(self):
        assert PROJECT_TRANSITIONS.roles_for(ProjectStatus.APPROVED) == {Role.ADMIN}
        assert PROJECT_TRANSITIONS.sources_for(ProjectStatus.APPROVED) == REVIEWABLE_STATUSES | {
            ProjectStatus.FINAL_CHECKS
        }

    def test_nothing_leads_back_to_submitted(self):
        assert ProjectStatus.TASK_SUBMITTED not in PROJECT_TRANSITIONS.destinations()
        assert PROJECT_TRANSITIONS.destinations() == set(ProjectStatus) - {ProjectStatus.TASK_SUBMITTED}

    def test_terminal_statuses_have_no_exits(self):
        assert TERMINAL_PROJECT_STATUSES == {ProjectStatus.APPROVED, ProjectStatus.REJECTED}
        for status in TERMINAL_PROJECT_STATUSES:
            for role in Role:
                assert PROJECT_TRANSITIONS.allowed_from(status, role) == []

    def test_tester_outcomes(self):
        allowed = set(PROJECT_TRANSITIONS.allowed_from(ProjectStatus.IN_TESTING, Role.TESTER))
        assert allowed == {
            ProjectStatus.TASK_SUBMITTED_TO_PLATFORM,
            ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW,
            ProjectStatus.PENDING_REVIEW,
            ProjectStatus.REWORK,
            ProjectStatus.CHANGES_DONE,
        }


class TestCreate:
    """Tests for project task creation."""

    def test_create_assigns_tester(self, service, team, project_payload, activity_log):
        task = service.create_project_task('contrib-1', project_payload)

        assert task.status == ProjectStatus.IN_TESTING
        assert task.tester_id == 't1'
        assert task.reviewer_id is None
        assert task.issue_url == project_payload['issue_url']
        assert activity_log.actions() == [ActivityAction.PROJECT_SUBMIT, ActivityAction.AUTO_ASSIGN]

    def test_three_testers_five_submissions(self, service, make_worker, project_payload):
        for tester_id in ('ta', 'tb', 'tc'):
            make_worker(tester_id, role=Role.TESTER)

        testers = [service.create_project_task('contrib-1', project_payload).tester_id for _ in range(5)]

        assert testers == ['ta', 'tb', 'tc', 'ta', 'tb']

    def test_no_tester_available(self, service, make_worker, project_payload):
        make_worker('t1', role=Role.TESTER, available=False)

        task = service.create_project_task('contrib-1', project_payload)

        assert task.status == ProjectStatus.TASK_SUBMITTED
        assert task.tester_id is None

    def test_description_must_be_ascii(self, service, project_payload):
        with pytest.raises(ValidationError) as exc:
            service.create_project_task('contrib-1', {**project_payload, 'description': 'Café crash'})
        assert 'ASCII' in str(exc.value)
        assert service.store.list_project_tasks() == []

    def test_repository_must_be_github(self, service, project_payload):
        with pytest.raises(ValidationError):
            service.create_project_task('contrib-1', {**project_payload, 'github_repo': 'https://gitlab.com/a/b'})
        with pytest.raises(ValidationError):
            service.create_project_task('contrib-1', {**project_payload, 'github_repo': 'https://github.com/acme'})

    def test_trailing_slash_is_fine(self, service, project_payload):
        task = service.create_project_task('contrib-1', {**project_payload, 'github_repo': 'http://github.com/a-b/c.d/'})

        assert task.github_repo == 'http://github.com/a-b/c.d/'

    def test_missing_fields(self, service, project_payload):
        with pytest.raises(ValidationError) as exc:
            service.create_project_task('contrib-1', {**project_payload, 'commit_hash': ''})
        assert 'commit_hash' in str(exc.value)

    def test_fields_must_be_text(self, service, project_payload):
        with pytest.raises(ValidationError) as exc:
            service.create_project_task('contrib-1', {**project_payload, 'description': 5})
        assert 'description must be a string' in str(exc.value)

        with pytest.raises(ValidationError):
            service.create_project_task('contrib-1', {**project_payload, 'github_repo': {'url': 'x'}})
        assert service.store.list_project_tasks() == []

    def test_issue_url_is_optional(self, service, project_payload):
        payload = dict(project_payload)
        del payload['issue_url']

        assert service.create_project_task('contrib-1', payload).issue_url == ''


class TestTesterTransitions:
    """Tests for tester outcomes and the tester binding."""

    def test_pending_review_auto_assigns_reviewer(self, service, team, make_project_task, activity_log):
        make_project_task(status=ProjectStatus.PENDING_REVIEW, reviewer_id='r1')
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        saved = service.projects.mark_pending_review(task.task_id, 't1', Role.TESTER, account_posted_in='acct-3')

        assert saved.status == ProjectStatus.PENDING_REVIEW
        assert saved.reviewer_id == 'r2'
        assert saved.tester_id == 't1'
        assert saved.account_posted_in == 'acct-3'
        assert activity_log.actions()[-2:] == [ActivityAction.PROJECT_TRANSITION, ActivityAction.AUTO_ASSIGN]

    def test_eligible_requires_task_link(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        with pytest.raises(ValidationError):
            service.projects.mark_eligible(task.task_id, 't1', Role.TESTER, task_link='')

        saved = service.projects.mark_eligible(task.task_id, 't1', Role.TESTER, task_link='https://x/1')
        assert saved.status == ProjectStatus.ELIGIBLE_FOR_MANUAL_REVIEW
        assert saved.task_link == 'https://x/1'
        assert saved.reviewer_id == 'r1'

    def test_transition_fields_must_be_text(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        with pytest.raises(ValidationError):
            service.transition_project(task.task_id, 'ELIGIBLE_FOR_MANUAL_REVIEW', Role.TESTER, 't1',
                                       {'task_link': 12345})
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.IN_TESTING

    def test_review_without_reviewers_leaves_binding_empty(self, service, make_worker, make_project_task):
        make_worker('t1', role=Role.TESTER)
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        saved = service.projects.mark_pending_review(task.task_id, 't1', Role.TESTER)

        assert saved.status == ProjectStatus.PENDING_REVIEW
        assert saved.reviewer_id is None

    def test_first_tester_to_act_is_bound(self, service, team, make_project_task):
        task = make_project_task()

        saved = service.projects.submit_to_platform(task.task_id, 't1', Role.TESTER, 'acct-1', 'https://x/2')

        assert saved.status == ProjectStatus.TASK_SUBMITTED_TO_PLATFORM
        assert saved.tester_id == 't1'
        assert saved.tester_assigned_at is not None
        assert saved.submitted_account == 'acct-1'

    def test_admin_does_not_become_tester(self, service, team, make_project_task):
        task = make_project_task()

        saved = service.projects.send_tester_feedback(task.task_id, 'admin', Role.ADMIN, 'Broken build')

        assert saved.status == ProjectStatus.REWORK
        assert saved.tester_id is None
        assert saved.tester_feedback == 'Broken build'

    def test_tester_binding_is_sticky(self, service, team, make_worker, make_project_task):
        make_worker('t2', role=Role.TESTER)
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        saved = service.projects.send_tester_feedback(task.task_id, 't2', Role.TESTER, 'Missing tests')

        assert saved.tester_id == 't1'

    def test_missing_platform_fields(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        with pytest.raises(ValidationError):
            service.projects.submit_to_platform(task.task_id, 't1', Role.TESTER, 'acct-1', '')
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.IN_TESTING

    def test_changes_done_needs_contributor_fix(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        with pytest.raises(PreconditionFailed) as exc:
            service.projects.mark_changes_done(task.task_id, 't1', Role.TESTER)
        assert exc.value.current_status == 'IN_TESTING'

    def test_testers_cannot_start_testing_by_hand(self, service, team, make_project_task):
        task = make_project_task()

        with pytest.raises(PermissionDenied) as exc:
            service.transition_project(task.task_id, 'IN_TESTING', Role.TESTER, 't1')
        assert exc.value.expected_roles == ['ADMIN', 'CONTRIBUTOR', 'SYSTEM']

    def test_system_start_binds_least_loaded_tester(self, service, team, make_worker, make_project_task,
                                                    activity_log):
        make_worker('t2', role=Role.TESTER)
        make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')
        task = make_project_task()

        saved = service.transition_project(task.task_id, 'IN_TESTING', Role.SYSTEM, SYSTEM_ACTOR_ID)

        assert saved.status == ProjectStatus.IN_TESTING
        assert saved.tester_id == 't2'
        assert saved.tester_assigned_at is not None
        assert activity_log.actions()[-2:] == [ActivityAction.AUTO_ASSIGN, ActivityAction.AUTO_ASSIGN]
        assert activity_log.events[-1].metadata['workerId'] == 't2'

    def test_system_start_without_testers_is_refused(self, service, make_worker, make_project_task):
        make_worker('t1', role=Role.TESTER, available=False)
        task = make_project_task()

        with pytest.raises(PreconditionFailed) as exc:
            service.transition_project(task.task_id, 'IN_TESTING', Role.SYSTEM, SYSTEM_ACTOR_ID)

        assert exc.value.current_status == 'TASK_SUBMITTED'
        stored = service.store.get_project_task(task.task_id)
        assert stored.status == ProjectStatus.TASK_SUBMITTED
        assert stored.tester_id is None


class TestReviewerTransitions:
    """Tests for reviewer outcomes and role gating."""

    def test_reviewers_cannot_approve(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.FINAL_CHECKS, tester_id='t1', reviewer_id='r1')

        with pytest.raises(PermissionDenied) as exc:
            service.projects.approve(task.task_id, 'r1', Role.REVIEWER)
        assert exc.value.role == 'REVIEWER'
        assert exc.value.current_status == 'FINAL_CHECKS'
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.FINAL_CHECKS

    def test_testers_cannot_request_changes(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1', reviewer_id='r1')

        with pytest.raises(PermissionDenied):
            service.projects.request_changes(task.task_id, 't1', Role.TESTER, 'fix X')

    def test_approval_from_testing_is_refused(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        with pytest.raises(PreconditionFailed) as exc:
            service.projects.approve(task.task_id, 'admin', Role.ADMIN)
        assert exc.value.current_status == 'IN_TESTING'
        assert 'FINAL_CHECKS' in exc.value.allowed_statuses
        assert 'IN_TESTING' in str(exc.value)
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.IN_TESTING

    def test_reject_records_reason(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1', reviewer_id='r1')

        with pytest.raises(ValidationError):
            service.projects.reject(task.task_id, 'r1', Role.REVIEWER, '')

        saved = service.projects.reject(task.task_id, 'r1', Role.REVIEWER, 'Duplicate of #12')
        assert saved.status == ProjectStatus.REJECTED
        assert saved.rejection_reason == 'Duplicate of #12'

    def test_reviewer_binding_is_sticky(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1', reviewer_id='r1')

        saved = service.projects.request_changes(task.task_id, 'r2', Role.REVIEWER, 'fix Y')

        assert saved.reviewer_id == 'r1'

    def test_unbound_reviewer_is_bound_on_first_action(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1')

        saved = service.projects.mark_final_checks(task.task_id, 'r2', Role.REVIEWER)

        assert saved.reviewer_id == 'r2'
        assert saved.status == ProjectStatus.FINAL_CHECKS


class TestChangesRoundTrip:
    """Tests for the CHANGES_REQUESTED loop and resubmission."""

    def test_full_round_trip(self, service, team, project_payload, activity_log):
        task = service.create_project_task('contrib-1', project_payload)
        task = service.projects.mark_pending_review(task.task_id, 't1', Role.TESTER)
        assert task.reviewer_id == 'r1'

        task = service.projects.request_changes(task.task_id, 'r1', Role.REVIEWER, 'fix X')
        assert task.status == ProjectStatus.CHANGES_REQUESTED
        assert task.reviewer_feedback == 'fix X'
        assert task.has_changes_requested is True
        assert task.changes_done is False

        task = service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-1')
        assert task.status == ProjectStatus.IN_TESTING
        assert task.changes_done is True
        assert task.reviewer_id == 'r1'
        assert task.tester_id == 't1'
        assert ActivityAction.PROJECT_RESUBMIT in activity_log.actions()

        task = service.projects.mark_changes_done(task.task_id, 't1', Role.TESTER)
        assert task.status == ProjectStatus.CHANGES_DONE

        task = service.projects.mark_final_checks(task.task_id, 'r1', Role.REVIEWER)
        task = service.projects.approve(task.task_id, 'admin', Role.ADMIN)
        assert task.status == ProjectStatus.APPROVED
        assert task.reviewer_id == 'r1'

    def test_rework_resubmission_applies_edits(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.REWORK, tester_id='t1', tester_feedback='Flaky')

        saved = service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-1', {
            'title': 'Retry loop v2',
            'description': '',
            'commit_hash': 'def456',
        })

        assert saved.status == ProjectStatus.REWORK_DONE
        assert saved.title == 'Retry loop v2'
        assert saved.commit_hash == 'def456'
        assert saved.description == task.description

    def test_resubmission_validates_edits(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.REWORK, tester_id='t1')

        with pytest.raises(ValidationError):
            service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-1',
                                          {'github_repo': 'not a url'})
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.REWORK

    def test_resubmitted_edits_must_be_text(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.REWORK, tester_id='t1')

        with pytest.raises(ValidationError):
            service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-1', {'title': 7})
        assert service.store.get_project_task(task.task_id).title == task.title

    def test_nothing_to_resubmit(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1')

        with pytest.raises(PreconditionFailed) as exc:
            service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-1')
        assert exc.value.allowed_statuses == ['CHANGES_REQUESTED', 'REWORK']

    def test_only_owner_resubmits(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.CHANGES_REQUESTED, tester_id='t1', reviewer_id='r1')

        with pytest.raises(PermissionDenied):
            service.resubmit_project_task(task.task_id, Role.CONTRIBUTOR, 'contrib-2')
        assert service.store.get_project_task(task.task_id).status == ProjectStatus.CHANGES_REQUESTED

    def test_admin_resubmits_for_contributor(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.CHANGES_REQUESTED, tester_id='t1', reviewer_id='r1')

        saved = service.resubmit_project_task(task.task_id, Role.ADMIN, 'admin')

        assert saved.status == ProjectStatus.IN_TESTING
        assert saved.changes_done is True


class TestReleaseAndDelete:
    """Tests for release_worker and delete."""

    def test_release_tester_in_testing(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        assert service.projects.release_worker('t1') == [task.task_id]

        saved = service.store.get_project_task(task.task_id)
        assert saved.status == ProjectStatus.TASK_SUBMITTED
        assert saved.tester_id is None

    def test_release_keeps_status_outside_testing(self, service, team, make_project_task):
        in_review = make_project_task(status=ProjectStatus.PENDING_REVIEW, tester_id='t1', reviewer_id='r1')

        service.projects.release_worker('r1')

        saved = service.store.get_project_task(in_review.task_id)
        assert saved.status == ProjectStatus.PENDING_REVIEW
        assert saved.reviewer_id is None
        assert saved.tester_id == 't1'

    def test_release_untouched_tasks(self, service, team, make_project_task):
        task = make_project_task(status=ProjectStatus.IN_TESTING, tester_id='t1')

        assert service.projects.release_worker('r2') == []
        assert service.store.get_project_task(task.task_id).version == task.version

    def test_owner_deletes(self, service, team, make_project_task, activity_log):
        task = make_project_task()

        service.delete_project_task(task.task_id, 'contrib-1', Role.CONTRIBUTOR)

        assert service.store.get_project_task(task.task_id) is None
        assert activity_log.events[-1].action == ActivityAction.DELETE

    def test_other_contributor_cannot_delete(self, service, team, make_project_task):
        task = make_project_task()

        with pytest.raises(PermissionDenied):
            service.delete_project_task(task.task_id, 'contrib-2', Role.CONTRIBUTOR)
