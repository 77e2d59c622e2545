"""
HTTP-level tests: authentication, routing and error mapping.
"""
import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from app.auth import create_access_token
from app.cache import cache
from app.config import INTERNAL_API_KEY
from app.database import get_db
from app.main import app


@pytest.fixture
def client(db, users):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    cache.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    cache.clear()


def auth(user_id, role):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


STUDENT = auth("st-1", "student")
OPERATOR = auth("op-1", "super_agent")
SUPER_WORKER = auth("sw-1", "super_worker")


def in_days(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def submit(client, words=500, days=10):
    response = client.post("/orders", json={"word_count": words, "deadline": in_days(days)}, headers=STUDENT)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestAuthentication:

    def test_missing_token(self, client):
        assert client.get("/orders").status_code in (401, 403)

    def test_bad_token(self, client):
        response = client.get("/orders", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_unknown_user(self, client):
        assert client.get("/orders", headers=auth("ghost", "student")).status_code == 401

    def test_operator_routes(self, client):
        response = client.get("/reports/dashboard", headers=STUDENT)
        assert response.status_code == 403
        assert response.json()["detail"] == "Operator access required"


class TestOrderRoutes:

    def test_submit_and_list(self, client):
        result = submit(client)

        assert result["order"]["price"] == 20.0
        assert result["order"]["agent_id"] == "ag-1"
        assert "Reference Code" in result["payment_message"]

        listed = client.get("/orders", headers=STUDENT).json()
        assert [o["id"] for o in listed] == [result["order"]["id"]]

    def test_request_validation(self, client):
        response = client.post("/orders", json={"word_count": 0, "deadline": in_days(3)}, headers=STUDENT)
        assert response.status_code == 422

    def test_illegal_transition_is_409(self, client):
        order_id = submit(client)["order"]["id"]

        response = client.post(f"/orders/{order_id}/status", json={"status": "completed"}, headers=STUDENT)

        assert response.status_code == 409
        body = response.json()
        assert body["from_status"] == "payment_approval"
        assert body["to_status"] == "completed"
        assert body["role"] == "student"

    def test_version_conflict_is_409(self, client):
        order = submit(client)["order"]
        client.post(f"/orders/{order['id']}/super-worker", json={"user_id": "sw-1"}, headers=OPERATOR)

        response = client.post(f"/orders/{order['id']}/status",
                               json={"status": "in_progress", "expected_version": order["version"]},
                               headers=OPERATOR)

        assert response.status_code == 409
        assert response.json()["current_version"] == order["version"] + 1

    def test_hidden_order_is_404(self, client):
        order_id = submit(client)["order"]["id"]
        response = client.get(f"/orders/{order_id}", headers=auth("st-2", "student"))
        assert response.status_code == 404

    def test_workflow_round_trip(self, client):
        order_id = submit(client)["order"]["id"]

        assigned = client.post(f"/orders/{order_id}/super-worker", json={"user_id": "sw-1"}, headers=OPERATOR)
        assert assigned.json()["status"] == "assigned_to_super_worker"

        proposed = client.post(f"/orders/{order_id}/proposals",
                               json={"notes": "Needs more words", "new_word_count": 1000},
                               headers=SUPER_WORKER)
        assert proposed.json()["status"] == "word_count_change"

        resolved = client.post(f"/orders/{order_id}/proposals/resolve", json={"approve": True}, headers=STUDENT)
        assert resolved.json()["status"] == "in_progress"
        assert resolved.json()["price"] == 40.0

        notes = client.get("/notifications", params={"unread_only": True}, headers=STUDENT).json()
        assert any("Please approve or decline." in n["message"] for n in notes)

        assert client.post("/notifications/read-all", headers=STUDENT).json()["updated"] == len(notes)

    def test_missing_notes_is_400(self, client):
        order_id = submit(client)["order"]["id"]
        client.post(f"/orders/{order_id}/status", json={"status": "in_progress"}, headers=OPERATOR)

        response = client.post(f"/orders/{order_id}/change-requests", json={"notes": ""}, headers=STUDENT)
        assert response.status_code == 400


class TestPricingRoutes:

    def test_quote(self, client):
        response = client.post("/pricing/quote", json={"word_count": 1500, "deadline": in_days(10)}, headers=STUDENT)
        assert response.json() == {"price": 60.0}

    def test_operator_edits_config(self, client):
        config = {"word_tiers": {"500": 25}, "deadline_tiers": {}, "fees": {"agent": 5, "super_worker": 10}}
        assert client.put("/pricing/config", json=config, headers=OPERATOR).status_code == 200

        response = client.post("/pricing/quote", json={"word_count": 500, "deadline": in_days(1)}, headers=STUDENT)
        assert response.json() == {"price": 25.0}

    def test_invalid_config_is_400(self, client):
        config = {"word_tiers": {"0": 25}, "fees": {"agent": 5, "super_worker": 10}}
        assert client.put("/pricing/config", json=config, headers=OPERATOR).status_code == 400


class TestAdminRoutes:

    def test_role_change(self, client):
        response = client.put("/admin/users/wk-2/role", json={"role": "super_worker"}, headers=OPERATOR)
        assert response.status_code == 200
        assert response.json()["role"] == "super_worker"

        fees = client.get("/pricing/fees/super-workers", headers=OPERATOR).json()
        assert {row["id"]: row["is_override"] for row in fees}["wk-2"] is True

    def test_broadcast(self, client):
        response = client.post("/notifications/broadcast",
                               json={"message": "Welcome", "target_role": "worker"}, headers=OPERATOR)
        assert response.json() == {"sent": 2}


class TestReferralRoutes:

    def test_sign_up_with_code(self, client):
        created = client.post("/referrals/codes", json={"code": "agnt", "role": "student", "owner_id": "ag-1"},
                              headers=OPERATOR)
        assert created.json()["code"] == "AGNT"

        response = client.post("/referrals/register",
                               json={"reference_code": "AGNT", "name": "Nia New", "email": "nia@example.com"})
        assert response.status_code == 200
        body = response.json()
        assert body["user"]["referred_by"] == "ag-1"

        headers = {"Authorization": f"Bearer {body['access_token']}"}
        assert client.get("/orders", headers=headers).json() == []

    def test_bad_code_is_400(self, client):
        response = client.post("/referrals/register",
                               json={"reference_code": "NOPE", "name": "Nia New", "email": "nia@example.com"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid reference code."

    def test_code_management_is_operator_only(self, client):
        assert client.get("/referrals/codes", headers=STUDENT).status_code == 403
        assert client.put("/referrals/codes/NOPE", json={"new_code": "FRESH"}, headers=OPERATOR).status_code == 404


class TestReportRoutes:

    def test_own_analytics(self, client):
        submit(client, words=500)
        body = client.get("/reports/analytics", headers=STUDENT).json()

        assert body["role"] == "student"
        assert [point["value"] for point in body["metrics"]["spending"]] == [20.0]

    def test_bad_window_is_400(self, client):
        params = {"start": in_days(2), "end": in_days(1)}
        assert client.get("/reports/analytics", params=params, headers=STUDENT).status_code == 400


class TestInternalRoutes:

    def test_requires_internal_key(self, client):
        assert client.get("/internal/notifications/outbox", headers={"X-Internal-Key": "wrong"}).status_code == 403

    def test_outbox_status_and_retry(self, client):
        submit(client)
        headers = {"X-Internal-Key": INTERNAL_API_KEY}

        summary = client.get("/internal/notifications/outbox", headers=headers).json()
        assert summary == {"pending": 0, "delivered": 2, "failed": 0, "skipped": 0}

        retried = client.post("/internal/notifications/retry", headers=headers).json()
        assert retried["attempted"] == 0
