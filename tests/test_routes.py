from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.database import get_db
from app.core.errors import ConflictError, PartialFailureError, StoreUnavailableError
from app.models.workflow_item import WorkflowStatus
from app.services.audit_log import AuditLog
from app.services.item_store import ItemStore
from app.services.workflow_service import WorkflowService
from main import app

from tests.conftest import ADMIN, OTHER_STUDENT, OWNER

BASE = "/api/workflow"


def headers(user_id, role):
    return {"X-User-Id": user_id, "X-User-Role": role, "X-User-Is-Active": "true"}


OWNER_H = headers(OWNER, "student")
OTHER_H = headers(OTHER_STUDENT, "student")
ADMIN_H = headers(ADMIN, "admin")


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def create_story(client, title="Skate park noise"):
    response = client.post(f"{BASE}/items", json={"kind": "story_idea", "title": title}, headers=OWNER_H)
    assert response.status_code == 201
    return response.json()


def submitted_story(client):
    item = create_story(client)
    response = client.post(f"{BASE}/items/{item['id']}/submit", headers=OWNER_H)
    assert response.status_code == 200
    return item


class TestAuth:

    def test_missing_user_is_401(self, client):
        response = client.get(f"{BASE}/my-tasks")
        assert response.status_code == 401

    def test_inactive_user_is_403(self, client):
        response = client.get(f"{BASE}/my-tasks", headers={"X-User-Id": OWNER, "X-User-Role": "student"})
        assert response.status_code == 403


class TestItems:

    def test_create_story(self, client):
        item = create_story(client)
        assert item["status"] == "draft"
        assert item["initialStatus"] == "draft"
        assert item["ownerId"] == OWNER
        assert "lastTransitionAt" in item

    def test_create_rejects_empty_title(self, client):
        response = client.post(f"{BASE}/items", json={"kind": "story_idea", "title": ""}, headers=OWNER_H)
        assert response.status_code == 422

    def test_get_unknown_item_is_404(self, client):
        response = client.get(f"{BASE}/items/nope", headers=ADMIN_H)
        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"

    def test_other_student_cannot_view(self, client):
        item = create_story(client)
        assert client.get(f"{BASE}/items/{item['id']}", headers=OTHER_H).status_code == 403
        assert client.get(f"{BASE}/items/{item['id']}", headers=ADMIN_H).status_code == 200

    def test_list_requires_status(self, client):
        assert client.get(f"{BASE}/items", headers=ADMIN_H).status_code == 422

    def test_list_pending(self, client):
        item = submitted_story(client)
        create_story(client, "Still a draft")
        response = client.get(f"{BASE}/items", params={"status": "pending"}, headers=ADMIN_H)
        assert response.status_code == 200
        assert [i["id"] for i in response.json()["items"]] == [item["id"]]
        assert client.get(f"{BASE}/items", params={"status": "pending"}, headers=OTHER_H).json()["items"] == []


class TestTransitions:

    def test_review_cycle(self, client):
        item = submitted_story(client)

        response = client.post(f"{BASE}/items/{item['id']}/reject", headers=ADMIN_H)
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "missing_reason"

        response = client.post(
            f"{BASE}/items/{item['id']}/reject", json={"reason": "insufficient detail"}, headers=ADMIN_H,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["item"]["status"] == "rejected"
        assert body["record"]["fromStatus"] == "pending"
        assert body["record"]["reason"] == "insufficient detail"

        assert client.post(f"{BASE}/items/{item['id']}/resubmit", headers=OWNER_H).status_code == 200

        history = client.get(f"{BASE}/items/{item['id']}/history", headers=OWNER_H).json()
        assert history["currentStatus"] == "pending"
        assert [r["toStatus"] for r in history["records"]] == ["pending", "rejected", "pending"]

    def test_student_approve_is_403(self, client):
        item = submitted_story(client)
        response = client.post(f"{BASE}/items/{item['id']}/approve", headers=OWNER_H)
        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["kind"] == "forbidden_actor"
        assert detail["currentStatus"] == "pending"
        assert detail["required"] == "role admin"

    def test_illegal_and_noop_are_400(self, client):
        item = create_story(client)
        illegal = client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
        assert illegal.status_code == 400
        assert illegal.json()["detail"]["kind"] == "illegal_transition"

        client.post(f"{BASE}/items/{item['id']}/submit", headers=OWNER_H)
        noop = client.post(f"{BASE}/items/{item['id']}/submit", headers=OWNER_H)
        assert noop.status_code == 400
        assert noop.json()["detail"]["kind"] == "no_op"

    def test_unknown_action_is_422(self, client):
        item = create_story(client)
        assert client.post(f"{BASE}/items/{item['id']}/publish", headers=ADMIN_H).status_code == 422

    def test_concurrent_modification_is_409(self, client):
        item = submitted_story(client)
        with patch.object(ItemStore, "update_status", side_effect=ConflictError(item["id"], "pending")):
            response = client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "concurrent_modification"

    def test_store_failure_is_500(self, client):
        item = submitted_story(client)
        with patch.object(ItemStore, "update_status", side_effect=StoreUnavailableError("db down")):
            response = client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
        assert response.status_code == 500
        assert response.json()["detail"]["kind"] == "store_unavailable"

    def test_audit_failure_leaves_item_unchanged(self, client):
        item = submitted_story(client)
        with patch.object(AuditLog, "append", side_effect=StoreUnavailableError("audit db down")):
            response = client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
        assert response.status_code == 500
        assert response.json()["detail"]["kind"] == "store_unavailable"

        history = client.get(f"{BASE}/items/{item['id']}/history", headers=ADMIN_H).json()
        assert history["currentStatus"] == "pending"
        assert len(history["records"]) == 1

    def test_partial_failure_body(self, client):
        item = submitted_story(client)
        error = PartialFailureError(item["id"], WorkflowStatus.PENDING, WorkflowStatus.APPROVED)
        with patch.object(WorkflowService, "request_transition", side_effect=error):
            response = client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["kind"] == "partial_failure"
        assert detail["itemId"] == item["id"]
        assert detail["fromStatus"] == "pending"
        assert detail["toStatus"] == "approved"

    def test_reconcile_after_status_moved_without_record(self, client, session_factory):
        item = submitted_story(client)
        db = session_factory()
        try:
            ItemStore(db).update_status(item["id"], WorkflowStatus.PENDING, WorkflowStatus.APPROVED)
            db.commit()
        finally:
            db.close()

        corrupt = client.get(f"{BASE}/items/{item['id']}/history", headers=ADMIN_H)
        assert corrupt.status_code == 500
        assert corrupt.json()["detail"]["kind"] == "corrupt_history"

        assert client.post(f"{BASE}/items/{item['id']}/reconcile", headers=OWNER_H).status_code == 403
        repaired = client.post(f"{BASE}/items/{item['id']}/reconcile", headers=ADMIN_H)
        assert repaired.status_code == 200
        assert repaired.json()["action"] == "reconcile"
        assert client.post(f"{BASE}/items/{item['id']}/reconcile", headers=ADMIN_H).status_code == 204
        assert client.get(f"{BASE}/items/{item['id']}/history", headers=ADMIN_H).status_code == 200

    def test_reviewer_decisions_notify_owner(self, client):
        item = create_story(client)
        with patch("app.routes.notification_client.notify_transition", new_callable=AsyncMock) as notify:
            client.post(f"{BASE}/items/{item['id']}/submit", headers=OWNER_H)
            notify.assert_not_awaited()
            client.post(f"{BASE}/items/{item['id']}/approve", headers=ADMIN_H)
            notify.assert_awaited_once()
            _, record = notify.await_args.args
            assert record.to_status.value == "approved"


class TestDashboards:

    def test_my_tasks(self, client):
        submitted_story(client)
        admin_tasks = client.get(f"{BASE}/my-tasks", headers=ADMIN_H).json()
        assert admin_tasks["totalTasks"] == 1
        assert admin_tasks["taskGroups"][0]["taskType"] == "review_story"

        owner_tasks = client.get(f"{BASE}/my-tasks", headers=OWNER_H).json()
        assert owner_tasks == {"totalTasks": 0, "taskGroups": []}

    def test_stats_admin_only(self, client):
        client.post(f"{BASE}/items", json={"kind": "teacher_request", "title": "Jordan Rivera"}, headers=headers("t-1", "teacher"))
        assert client.get(f"{BASE}/stats", headers=OWNER_H).status_code == 403

        response = client.get(f"{BASE}/stats", params={"kind": "teacher_request"}, headers=ADMIN_H)
        assert response.status_code == 200
        assert response.json()["counts"] == {"pending": 1, "approved": 0, "rejected": 0, "total": 1}

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"
