"""Tests for the HTTP API."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from autopilot.api.server import app
from autopilot.automations.models import RunStatus, ScheduleTrigger, WebhookTrigger


class TestHealthEndpoint:
    """Health check endpoints - no authentication required."""

    def test_health_check_no_auth(self, test_client: TestClient):
        response = test_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "content-autopilot"

    def test_root_no_auth(self, test_client: TestClient):
        response = test_client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:
    """Tests for token validation."""

    @pytest.mark.parametrize("path", ["/automations", "/runs", "/notifications", "/automations/some-id"])
    def test_read_endpoints_require_auth(self, test_client: TestClient, path: str):
        response = test_client.get(path)
        assert response.status_code == 401
        assert "Could not validate credentials" in response.json()["detail"]

    def test_expired_token_rejected(self, test_client: TestClient, expired_token: str):
        response = test_client.get("/automations", headers={"Authorization": f"Bearer {expired_token}"})
        assert response.status_code == 401

    def test_garbage_token_rejected(self, test_client: TestClient):
        response = test_client.get("/automations", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_service_not_initialized(self, auth_headers: dict, disable_rate_limiting):
        with patch("autopilot.api.server.engine", None):
            client = TestClient(app)
            response = client.get("/automations", headers=auth_headers)
        assert response.status_code == 503


class TestProcessEndpoint:
    """Tests for POST /automations/process."""

    def test_requires_token(self, test_client: TestClient, api_engine, make_automation):
        make_automation()
        response = test_client.post("/automations/process")
        assert response.status_code == 401
        assert api_engine.recorder.query() == []

    def test_requires_scope_before_touching_automations(
        self, test_client: TestClient, token_with_scopes, api_engine, make_automation
    ):
        make_automation()
        headers = {"Authorization": f"Bearer {token_with_scopes(['read', 'write'])}"}

        response = test_client.post("/automations/process", headers=headers)

        assert response.status_code == 403
        assert "automations:run" in response.json()["detail"]
        assert api_engine.recorder.query() == []

    def test_batch(self, test_client: TestClient, auth_headers: dict, make_automation):
        automation = make_automation(ScheduleTrigger(cadence="daily"))

        response = test_client.post("/automations/process", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["triggered"] == 1
        assert data["results"][0]["id"] == automation.id
        assert data["results"][0]["status"] == "completed"

    def test_manual_run(self, test_client: TestClient, auth_headers: dict, api_engine, make_automation):
        automation = make_automation(
            ScheduleTrigger(cadence="weekly", days=(0,)),
            last_triggered_at=datetime.now(timezone.utc),
        )

        response = test_client.post(
            "/automations/process", json={"automation_id": automation.id}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["triggered"] == 1
        assert api_engine.store.get_automation(automation.id).items_created == 1

    def test_manual_run_unknown_id(self, test_client: TestClient, auth_headers: dict):
        response = test_client.post(
            "/automations/process", json={"automation_id": "missing"}, headers=auth_headers
        )
        assert response.status_code == 404


class TestAutomationEndpoints:
    """Tests for automation CRUD endpoints."""

    def test_create(self, test_client: TestClient, auth_headers: dict, api_engine):
        response = test_client.post(
            "/automations",
            json={
                "name": "Blog to thread",
                "workspace_id": "ws-1",
                "trigger_type": "rss",
                "trigger_config": {"url": "https://blog.example.com/feed", "last_guid": "A"},
                "content_type": "thread",
                "auto_generate_content": True,
            },
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["trigger_type"] == "feed"
        assert data["trigger_config"]["last_seen_guid"] == "A"
        assert data["created_by"] == "test-user"
        assert api_engine.store.get_automation(data["id"]).content_type == "thread"

    def test_create_requires_write_scope(self, test_client: TestClient, token_with_scopes):
        headers = {"Authorization": f"Bearer {token_with_scopes(['read'])}"}
        response = test_client.post(
            "/automations",
            json={"name": "x", "workspace_id": "ws-1", "trigger_type": "schedule"},
            headers=headers,
        )
        assert response.status_code == 403

    def test_create_rejects_mismatched_config(self, test_client: TestClient, auth_headers: dict):
        response = test_client.post(
            "/automations",
            json={
                "name": "Broken",
                "workspace_id": "ws-1",
                "trigger_type": "schedule",
                "trigger_config": {"url": "https://blog.example.com/feed"},
            },
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_webhook_secret_is_masked(self, test_client: TestClient, auth_headers: dict, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"))

        response = test_client.get(f"/automations/{automation.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["trigger_config"]["secret"] == "********"

    def test_list_and_filter(self, test_client: TestClient, auth_headers: dict, make_automation):
        make_automation(workspace_id="ws-1")
        make_automation(workspace_id="ws-2")

        assert len(test_client.get("/automations", headers=auth_headers).json()) == 2
        filtered = test_client.get("/automations", params={"workspace_id": "ws-2"}, headers=auth_headers)
        assert [a["workspace_id"] for a in filtered.json()] == ["ws-2"]

    def test_get_missing(self, test_client: TestClient, auth_headers: dict):
        response = test_client.get("/automations/missing", headers=auth_headers)
        assert response.status_code == 404


class TestWebhookEndpoint:
    """Tests for POST /automations/{id}/webhook."""

    def test_delivery(self, test_client: TestClient, api_engine, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"))

        response = test_client.post(
            f"/automations/{automation.id}/webhook",
            json={"title": "New release", "link": "https://example.com/release"},
            headers={"X-Webhook-Secret": "s3cret", "X-Delivery-Id": "d-1"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert api_engine.store.list_artifacts("ws-1")[0].title == "New release"

    def test_redelivery_skipped(self, test_client: TestClient, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"))
        headers = {"X-Webhook-Secret": "s3cret", "X-Delivery-Id": "d-1"}
        url = f"/automations/{automation.id}/webhook"

        test_client.post(url, json={"title": "New release"}, headers=headers)
        response = test_client.post(url, json={"title": "New release"}, headers=headers)

        assert response.json()["status"] == "skipped"

    def test_bad_secret(self, test_client: TestClient, api_engine, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"))

        response = test_client.post(
            f"/automations/{automation.id}/webhook",
            json={"title": "x"},
            headers={"X-Webhook-Secret": "wrong"},
        )

        assert response.status_code == 403
        assert api_engine.recorder.query() == []

    def test_missing_secret(self, test_client: TestClient, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"))
        response = test_client.post(f"/automations/{automation.id}/webhook", json={"title": "x"})
        assert response.status_code == 403

    def test_automation_without_secret_rejects_all(self, test_client: TestClient, make_automation):
        automation = make_automation(WebhookTrigger())
        response = test_client.post(
            f"/automations/{automation.id}/webhook",
            json={"title": "x"},
            headers={"X-Webhook-Secret": "anything"},
        )
        assert response.status_code == 403

    def test_not_a_webhook_automation(self, test_client: TestClient, make_automation):
        automation = make_automation(ScheduleTrigger())
        response = test_client.post(
            f"/automations/{automation.id}/webhook",
            json={"title": "x"},
            headers={"X-Webhook-Secret": "s3cret"},
        )
        assert response.status_code == 409

    def test_inactive(self, test_client: TestClient, make_automation):
        automation = make_automation(WebhookTrigger(secret="s3cret"), is_active=False)
        response = test_client.post(
            f"/automations/{automation.id}/webhook",
            json={"title": "x"},
            headers={"X-Webhook-Secret": "s3cret"},
        )
        assert response.status_code == 409

    def test_unknown_automation(self, test_client: TestClient):
        response = test_client.post(
            "/automations/missing/webhook",
            json={"title": "x"},
            headers={"X-Webhook-Secret": "s3cret"},
        )
        assert response.status_code == 404


class TestRunEndpoints:
    """Tests for run history endpoints."""

    def test_list_and_filter(self, test_client: TestClient, auth_headers: dict, api_engine, make_automation):
        automation = make_automation()
        recorder = api_engine.recorder
        completed = recorder.start(automation)
        recorder.finalize(completed, RunStatus.COMPLETED, result="Created: Daily tips")
        skipped = recorder.start(automation)
        recorder.finalize(skipped, RunStatus.SKIPPED, result="Trigger conditions not met")

        response = test_client.get(
            "/runs", params={"automation_id": automation.id, "status": "completed"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == [completed.id]

    def test_time_range(self, test_client: TestClient, auth_headers: dict, api_engine, make_automation):
        automation = make_automation()
        now = datetime.now(timezone.utc)
        api_engine.recorder.start(automation, now - timedelta(days=2))
        recent = api_engine.recorder.start(automation, now)

        response = test_client.get(
            "/runs",
            params={"since": (now - timedelta(hours=1)).isoformat()},
            headers=auth_headers,
        )

        assert [r["id"] for r in response.json()] == [recent.id]

    def test_invalid_status(self, test_client: TestClient, auth_headers: dict):
        response = test_client.get("/runs", params={"status": "exploded"}, headers=auth_headers)
        assert response.status_code == 400

    def test_get_run_with_transitions(
        self, test_client: TestClient, auth_headers: dict, api_engine, make_automation
    ):
        automation = make_automation()
        run = api_engine.recorder.start(automation)
        api_engine.recorder.finalize(run, RunStatus.FAILED, error="boom")

        response = test_client.get(f"/runs/{run.id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert data["error"] == "boom"
        assert [t["status"] for t in data["transitions"]] == ["running", "failed"]

    def test_get_missing_run(self, test_client: TestClient, auth_headers: dict):
        response = test_client.get("/runs/missing", headers=auth_headers)
        assert response.status_code == 404


class TestNotificationEndpoint:
    """Tests for GET /notifications."""

    def test_lists_callers_notifications(self, test_client: TestClient, auth_headers: dict, make_automation):
        make_automation(created_by="test-user")
        make_automation(created_by="someone-else", name="Other")
        test_client.post("/automations/process", headers=auth_headers)

        response = test_client.get("/notifications", headers=auth_headers)

        assert response.status_code == 200
        notifications = response.json()
        assert len(notifications) == 1
        assert notifications[0]["message"] == "Created: Daily tips"
