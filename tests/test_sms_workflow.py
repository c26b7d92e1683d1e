"""Tests for the one-time code exchange."""
import pytest

from fieldsync_core import lifecycle, models, schemas, sms_workflow
from fieldsync_core.exceptions import ConflictError, PermissionDeniedError
from fieldsync_core.models import NotificationType, SmsRequestStatus, TaskStatus, TimeEntryType
from fieldsync_core.state_machine import StateTransitionError
from fieldsync_core.time_tracking import record_entry


@pytest.fixture
def task(db, admin_id, employee_id):
    """A task accepted by the employee."""
    task = lifecycle.create_task(db, admin_id, schemas.TaskCreate(title="Open bank account", customer_name="Bank AG"))
    lifecycle.assign_task(db, admin_id, task.id, employee_id)
    record_entry(db, employee_id, TimeEntryType.CHECK_IN)
    return lifecycle.accept_task(db, employee_id, task.id)


class TestRequest:

    def test_first_request_is_pending(self, db, task, admin_id, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)

        assert request.status == SmsRequestStatus.PENDING
        assert request.sms_code is None
        db.refresh(task)
        assert task.status == TaskStatus.SMS_REQUESTED
        admin_notifications = db.query(models.Notification).filter(
            models.Notification.user_id == admin_id,
            models.Notification.type == NotificationType.SMS_REQUESTED,
        ).all()
        assert len(admin_notifications) == 1

    def test_resend_inserts_new_row(self, db, task, employee_id):
        first = sms_workflow.request_sms_code(db, employee_id, task.id)
        second = sms_workflow.resend_sms_code(db, employee_id, task.id)

        assert second.id != first.id
        assert second.status == SmsRequestStatus.RESEND_REQUESTED
        db.refresh(first)
        assert first.status == SmsRequestStatus.PENDING
        assert len(sms_workflow.get_sms_requests(db, employee_id, task_id=task.id)) == 2

    def test_request_requires_accepted_task(self, db, admin_id, employee_id):
        task = lifecycle.create_task(db, admin_id, schemas.TaskCreate(title="Not yet", customer_name="Bank AG"))
        lifecycle.assign_task(db, admin_id, task.id, employee_id)

        with pytest.raises(StateTransitionError):
            sms_workflow.request_sms_code(db, employee_id, task.id)

    def test_only_assignee_can_request(self, db, task, other_employee_id):
        with pytest.raises(PermissionDeniedError):
            sms_workflow.request_sms_code(db, other_employee_id, task.id)

    def test_employees_only_see_their_requests(self, db, task, admin_id, employee_id, other_employee_id):
        sms_workflow.request_sms_code(db, employee_id, task.id)

        assert len(sms_workflow.get_sms_requests(db, admin_id)) == 1
        assert sms_workflow.get_sms_requests(db, other_employee_id) == []


class TestFulfill:

    def test_fulfill_delivers_code(self, db, task, admin_id, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)

        request = sms_workflow.fulfill_sms_code(db, admin_id, request.id, " 123456 ")

        assert request.sms_code == "123456"
        assert request.status == SmsRequestStatus.FULFILLED
        assert request.fulfilled_at is not None
        # Delivering the code does not move the task
        db.refresh(task)
        assert task.status == TaskStatus.SMS_REQUESTED
        received = db.query(models.Notification).filter(
            models.Notification.user_id == employee_id,
            models.Notification.type == NotificationType.SMS_CODE_RECEIVED,
        ).all()
        assert len(received) == 1

    def test_blank_code_rejected(self, db, task, admin_id, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)

        with pytest.raises(ValueError):
            sms_workflow.fulfill_sms_code(db, admin_id, request.id, "   ")

    def test_code_delivered_once(self, db, task, admin_id, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)
        sms_workflow.fulfill_sms_code(db, admin_id, request.id, "111111")

        with pytest.raises(ConflictError):
            sms_workflow.fulfill_sms_code(db, admin_id, request.id, "222222")

        db.refresh(request)
        assert request.sms_code == "111111"

    def test_employee_cannot_fulfill(self, db, task, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)

        with pytest.raises(PermissionDeniedError):
            sms_workflow.fulfill_sms_code(db, employee_id, request.id, "123456")

    def test_current_request_prefers_delivered_code(self, db, task, admin_id, employee_id):
        first = sms_workflow.request_sms_code(db, employee_id, task.id)
        assert sms_workflow.current_sms_request(db, task.id).id == first.id

        sms_workflow.fulfill_sms_code(db, admin_id, first.id, "111111")
        second = sms_workflow.resend_sms_code(db, employee_id, task.id)
        # The resend has no code yet; the delivered one stays current
        assert sms_workflow.current_sms_request(db, task.id).id == first.id

        sms_workflow.fulfill_sms_code(db, admin_id, second.id, "222222")
        current = sms_workflow.current_sms_request(db, task.id)
        assert current.id == second.id
        assert current.sms_code == "222222"


class TestResume:

    def test_resume_requires_code(self, db, task, employee_id):
        sms_workflow.request_sms_code(db, employee_id, task.id)

        with pytest.raises(ConflictError):
            sms_workflow.resume_task(db, employee_id, task.id)

    def test_resume_after_code(self, db, task, admin_id, employee_id):
        request = sms_workflow.request_sms_code(db, employee_id, task.id)
        sms_workflow.fulfill_sms_code(db, admin_id, request.id, "123456")

        task = sms_workflow.resume_task(db, employee_id, task.id)

        assert task.status == TaskStatus.IN_PROGRESS

    def test_resume_in_progress_is_noop(self, db, task, employee_id):
        assert sms_workflow.resume_task(db, employee_id, task.id).status == TaskStatus.IN_PROGRESS
