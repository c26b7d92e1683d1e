"""End-to-end tests of the HTTP API."""
from uuid import uuid4

import pytest

from .helpers import auth

API = "/api/v1"


@pytest.fixture
def task_id(client, admin_id):
    response = client.post(f"{API}/tasks/", json={
        "title": "Verify identity",
        "customer_name": "ACME GmbH",
        "priority": "high",
        "special_compensation": "25.00",
    }, headers=auth(admin_id))
    assert response.status_code == 201
    return response.json()["id"]


def _check_in(client, user_id):
    response = client.post(f"{API}/time-entries/", json={"entry_type": "check_in"}, headers=auth(user_id))
    assert response.status_code == 201


class TestIdentity:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_header(self, client):
        assert client.get(f"{API}/tasks/").status_code == 422

    def test_unknown_user(self, client):
        response = client.get(f"{API}/tasks/", headers=auth(uuid4()))

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "unknown_user"

    def test_me(self, client, employee_id):
        response = client.get(f"{API}/users/me", headers=auth(employee_id))

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == str(employee_id)
        assert body["role"] == "employee"
        assert body["status"] == "offline"

    def test_has_role(self, client, admin_id, employee_id):
        response = client.get(f"{API}/users/{admin_id}/has-role/admin", headers=auth(employee_id))

        assert response.json()["has_role"] is True


class TestTaskFlow:

    def test_employee_cannot_create_task(self, client, employee_id):
        response = client.post(f"{API}/tasks/", json={"title": "x", "customer_name": "y"}, headers=auth(employee_id))

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "permission_denied"

    def test_create_validation(self, client, admin_id):
        response = client.post(f"{API}/tasks/", json={"title": " ", "customer_name": "y"}, headers=auth(admin_id))

        assert response.status_code == 422

    def test_full_lifecycle(self, client, task_id, admin_id, employee_id):
        admin, employee = auth(admin_id), auth(employee_id)

        response = client.post(f"{API}/tasks/{task_id}/assign", json={"user_id": str(employee_id)}, headers=admin)
        assert response.status_code == 200
        assert response.json()["status"] == "assigned"

        # Not checked in yet
        response = client.post(f"{API}/tasks/{task_id}/accept", headers=employee)
        assert response.status_code == 422
        assert response.json()["detail"]["guard"] == "not_checked_in"

        _check_in(client, employee_id)
        response = client.post(f"{API}/tasks/{task_id}/accept", headers=employee)
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

        response = client.post(f"{API}/tasks/{task_id}/sms-requests", headers=employee)
        assert response.status_code == 201
        request_id = response.json()["id"]
        assert response.json()["status"] == "pending"

        response = client.post(f"{API}/sms-requests/{request_id}/fulfill", json={"sms_code": "424242"}, headers=admin)
        assert response.status_code == 200
        response = client.post(f"{API}/sms-requests/{request_id}/fulfill", json={"sms_code": "000000"}, headers=admin)
        assert response.status_code == 409

        current = client.get(f"{API}/tasks/{task_id}/sms-requests/current", headers=employee).json()
        assert current["sms_code"] == "424242"

        response = client.post(f"{API}/tasks/{task_id}/resume", headers=employee)
        assert response.json()["status"] == "in_progress"

        response = client.post(f"{API}/tasks/{task_id}/progress", json={"workflow_step": 3}, headers=employee)
        assert response.json()["workflow_step"] == 3

        response = client.post(f"{API}/tasks/{task_id}/complete", headers=employee)
        assert response.status_code == 422
        assert response.json()["detail"]["guard"] == "no_documents"

        response = client.post(f"{API}/documents/", json={
            "file_name": "id.jpg",
            "file_path": f"{employee_id}/id.jpg",
            "file_size": 4096,
            "document_type": "id_card",
            "task_id": task_id,
        }, headers=employee)
        assert response.status_code == 201

        response = client.post(f"{API}/tasks/{task_id}/complete", json={"notes": "Done"}, headers=employee)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = client.post(f"{API}/tasks/{task_id}/cancel", headers=admin)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "invalid_status_transition"

        history = client.get(f"{API}/tasks/{task_id}/history", headers=admin).json()
        assert history[0]["change_type"] == "completed"

    def test_double_assignment_conflicts(self, client, task_id, admin_id, employee_id, other_employee_id):
        admin = auth(admin_id)
        client.post(f"{API}/tasks/{task_id}/assign", json={"user_id": str(employee_id)}, headers=admin)

        response = client.post(f"{API}/tasks/{task_id}/assign", json={"user_id": str(other_employee_id)}, headers=admin)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "conflict"

    def test_task_hidden_from_other_employees(self, client, task_id, admin_id, employee_id, other_employee_id):
        client.post(f"{API}/tasks/{task_id}/assign", json={"user_id": str(employee_id)}, headers=auth(admin_id))

        assert client.get(f"{API}/tasks/{task_id}", headers=auth(employee_id)).status_code == 200
        assert client.get(f"{API}/tasks/{task_id}", headers=auth(other_employee_id)).status_code == 404
        assert client.get(f"{API}/tasks/", headers=auth(other_employee_id)).json() == []
        assert len(client.get(f"{API}/assignments/", headers=auth(employee_id)).json()) == 1

    def test_delete_task(self, client, task_id, admin_id):
        assert client.delete(f"{API}/tasks/{task_id}", headers=auth(admin_id)).status_code == 204
        assert client.get(f"{API}/tasks/{task_id}", headers=auth(admin_id)).status_code == 404


class TestChatAndPresence:

    def test_direct_chat(self, client, admin_id, employee_id):
        response = client.post(f"{API}/messages/", json={
            "recipient_id": str(employee_id),
            "message": "Please call the customer",
        }, headers=auth(admin_id))
        assert response.status_code == 201

        unread = client.get(f"{API}/messages/unread", headers=auth(employee_id)).json()
        assert unread == [{"sender_id": str(admin_id), "count": 1}]

        response = client.post(f"{API}/messages/conversations/{admin_id}/read", headers=auth(employee_id))
        assert response.json() == {"updated": 1}
        assert client.get(f"{API}/messages/unread", headers=auth(employee_id)).json() == []

    def test_message_to_self_rejected(self, client, employee_id):
        response = client.post(f"{API}/messages/", json={
            "recipient_id": str(employee_id),
            "message": "Note to self",
        }, headers=auth(employee_id))

        assert response.status_code == 400

    def test_status_and_sign_out(self, client, employee_id):
        response = client.put(f"{API}/users/me/status", json={"status": "busy"}, headers=auth(employee_id))
        assert response.json()["status"] == "busy"

        response = client.post(f"{API}/users/me/sign-out", headers=auth(employee_id))
        assert response.json()["status"] == "offline"

    def test_invalid_status(self, client, employee_id):
        response = client.put(f"{API}/users/me/status", json={"status": "sleeping"}, headers=auth(employee_id))

        assert response.status_code == 422


class TestTimeAndAdmin:

    def test_clock_today(self, client, employee_id):
        _check_in(client, employee_id)

        body = client.get(f"{API}/time-entries/today", headers=auth(employee_id)).json()

        assert body["state"] == "in"
        assert body["checked_in"] is True
        assert [e["entry_type"] for e in body["entries"]] == ["check_in"]

    def test_invalid_clock_sequence(self, client, employee_id):
        response = client.post(f"{API}/time-entries/", json={"entry_type": "check_out"}, headers=auth(employee_id))

        assert response.status_code == 400

    def test_other_users_clock_is_admin_only(self, client, admin_id, employee_id, other_employee_id):
        url = f"{API}/time-entries/today?user_id={other_employee_id}"

        assert client.get(url, headers=auth(employee_id)).status_code == 403
        assert client.get(url, headers=auth(admin_id)).json()["state"] == "out"

    def test_stats_admin_only(self, client, task_id, admin_id, employee_id):
        assert client.get(f"{API}/stats/", headers=auth(employee_id)).status_code == 403

        stats = client.get(f"{API}/stats/", headers=auth(admin_id)).json()
        assert stats["total_tasks"] == 1
        assert stats["pending_tasks"] == 1

    def test_admin_creates_user(self, client, admin_id):
        response = client.post(f"{API}/users/", json={
            "email": "new@example.com",
            "first_name": "Nora",
            "last_name": "New",
        }, headers=auth(admin_id))

        assert response.status_code == 201
        assert response.json()["role"] == "employee"

    def test_notifications(self, client, task_id, admin_id, employee_id):
        client.post(f"{API}/tasks/{task_id}/assign", json={"user_id": str(employee_id)}, headers=auth(admin_id))

        notifications = client.get(f"{API}/notifications/", headers=auth(employee_id)).json()
        assert [n["type"] for n in notifications] == ["task_assigned"]

        response = client.post(f"{API}/notifications/read-all", headers=auth(employee_id))
        assert response.json() == {"updated": 1}
        assert client.get(f"{API}/notifications/?unread_only=true", headers=auth(employee_id)).json() == []


class TestRealtime:

    def test_unknown_topic(self, client, admin_id):
        response = client.get(f"{API}/realtime/invoices", headers=auth(admin_id))

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "unknown_topic"

    def test_stream_requires_known_user(self, client):
        assert client.get(f"{API}/realtime/tasks", headers=auth(uuid4())).status_code == 401
