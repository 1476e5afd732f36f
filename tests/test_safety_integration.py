"""
Safety API Integration Tests

Exercises the HTTP surface with the real coordinator graph on in-memory
storage. The application lifespan is not run: the coordinator is placed
on ``app.state`` directly.

Run with: python -m pytest tests/test_safety_integration.py -v
"""

import asyncio
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from sparq_safety.main import app
from sparq_safety.safety.intervention_planner import InterventionPlanner
from sparq_safety.safety.models import Severity


@pytest.fixture
def coordinator(make_coordinator):
    """Sync-built coordinator; the worker is never started."""
    return make_coordinator()


@pytest.fixture
def client(coordinator):
    app.state.coordinator = coordinator
    yield TestClient(app)
    app.state.coordinator = None


def evaluate(client, text, user_id="user_001", **extra):
    response = client.post(
        "/safety/evaluate",
        json={"user_id": user_id, "couple_id": "couple_001", "text": text, **extra},
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_safe_input(client):
    """Everyday talk is safe and creates no alert."""
    data = evaluate(client, "We're planning a weekend trip together")

    assert data["severity"] == "none"
    assert data["alert"] is None
    assert data["requires_review"] is False
    assert data["message"] == ""
    assert "us-988-lifeline" in [r["id"] for r in data["resources"]]


def test_crisis_detection(client, notifier):
    """Suicidal ideation is critical and pages a professional before answering."""
    data = evaluate(client, "I want to die")

    assert data["severity"] == "critical"
    assert data["requires_immediate_intervention"] is True
    assert data["indicators"][0]["category"] == "suicidal_ideation"
    assert data["alert"]["status"] == "professional_notified"
    assert data["alert"]["notification_pending"] is False
    assert "988" in data["message"]
    assert len(notifier.calls) == 1


def test_response_has_no_user_text(client):
    data = evaluate(client, "My husband hit me last night")

    assert "My husband hit me last night" not in str(data)


def test_domestic_violence_resources_by_jurisdiction(client):
    data = evaluate(client, "My husband hit me last night", jurisdiction="CA-AB")

    assert data["severity"] == "high"
    assert data["resources"][0]["id"] == "ca-ab-family-violence"
    assert data["alert"]["type"] == "domestic_violence"
    assert data["alert"]["status"] == "escalated"


def test_missing_text_rejected(client):
    response = client.post("/safety/evaluate", json={"user_id": "user_001"})

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["detail"][0]["loc"][-1] == "text"


def test_blank_text_rejected(client):
    """Whitespace passes schema validation but not the coordinator."""
    response = client.post("/safety/evaluate", json={"user_id": "user_001", "text": "   "})

    assert response.status_code == 422
    assert response.json()["detail"] == {"field": "text", "message": "text is required"}


def test_invalid_context_rejected(client):
    response = client.post(
        "/safety/evaluate",
        json={"user_id": "user_001", "text": "hello", "context": "bogus"},
    )

    assert response.status_code == 422


def test_validation_error_hides_input(client):
    response = client.post(
        "/safety/evaluate",
        json={"user_id": "user_001", "text": "x" * 10001},
    )

    assert response.status_code == 422
    assert "xxxx" not in response.text


def test_alert_lifecycle(client):
    """Alerts are listed, resolved once, then rejected with 409."""
    alert_id = evaluate(client, "My husband hit me last night")["alert"]["id"]

    listed = client.get("/safety/alerts", params={"user_id": "user_001"}).json()
    assert [a["id"] for a in listed] == [alert_id]

    resolved = client.post(f"/safety/alerts/{alert_id}/resolve", json={"note": "Safe with family"})
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "resolved"
    assert resolved.json()["resolution_note"] == "Safe with family"

    again = client.post(f"/safety/alerts/{alert_id}/resolve", json={})
    assert again.status_code == 409
    assert again.json()["detail"] == {"alert_id": alert_id, "from": "resolved", "to": "resolved"}

    assert client.get("/safety/alerts", params={"user_id": "user_001"}).json() == []
    assert client.get(f"/safety/alerts/{alert_id}").json()["status"] == "resolved"


def test_transfer_alert(client):
    alert_id = evaluate(client, "I feel so hopeless")["alert"]["id"]

    response = client.post(f"/safety/alerts/{alert_id}/transfer", json={"note": "Referred to clinic"})

    assert response.status_code == 200
    assert response.json()["status"] == "transferred"


def test_unknown_alert(client):
    assert client.get("/safety/alerts/missing").status_code == 404
    assert client.post("/safety/alerts/missing/resolve", json={}).status_code == 404
    assert client.get("/safety/alerts/missing/follow-ups").status_code == 404


def test_follow_ups_empty_until_scheduled(client):
    """Follow-ups are written by the escalation worker, which is not running here."""
    alert_id = evaluate(client, "My husband hit me last night")["alert"]["id"]

    response = client.get(f"/safety/alerts/{alert_id}/follow-ups")

    assert response.status_code == 200
    assert response.json() == []


def test_alert_stats(client):
    evaluate(client, "I want to die", user_id="user_a")
    evaluate(client, "My husband hit me last night", user_id="user_b")

    stats = client.get("/safety/alerts/stats").json()

    assert stats["active_alerts"] == 2
    assert stats["by_severity"]["critical"] == 1
    assert stats["pending_notifications"] == 1


def test_complete_follow_up(client, persistence):
    alert_id = evaluate(client, "My husband hit me last night")["alert"]["id"]
    schedule = InterventionPlanner().follow_up_schedule(Severity.HIGH, datetime.now(timezone.utc))
    asyncio.run(persistence.save_follow_ups(alert_id, schedule))

    response = client.post(
        f"/safety/alerts/{alert_id}/follow-ups/0/complete",
        json={"completed_by": "therapist_9"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "done"
    assert response.json()["completed_by"] == "therapist_9"
    follow_ups = client.get(f"/safety/alerts/{alert_id}/follow-ups").json()
    assert [f["status"] for f in follow_ups] == ["done", "scheduled", "scheduled"]


def test_complete_unknown_follow_up(client):
    alert_id = evaluate(client, "My husband hit me last night")["alert"]["id"]

    response = client.post(
        f"/safety/alerts/{alert_id}/follow-ups/0/complete",
        json={"completed_by": "therapist_9"},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Follow-up not found"
    assert response.json()["detail"] == {"alert_id": alert_id, "index": 0}


def test_resource_access_log(client):
    alert_id = evaluate(client, "I want to die")["alert"]["id"]

    response = client.post(
        "/safety/resources/us-988-lifeline/access",
        json={"user_id": "user_001", "access_method": "phone", "alert_id": alert_id},
    )

    assert response.status_code == 201
    assert response.json()["resource_id"] == "us-988-lifeline"

    log = client.get("/safety/resources/access", params={"user_id": "user_001"}).json()
    assert [(a["resource_id"], a["access_method"], a["alert_id"]) for a in log] == [
        ("us-988-lifeline", "phone", alert_id)
    ]


def test_resource_access_rejected(client):
    bad_method = client.post(
        "/safety/resources/us-988-lifeline/access",
        json={"user_id": "user_001", "access_method": "fax"},
    )
    unknown_alert = client.post(
        "/safety/resources/us-988-lifeline/access",
        json={"user_id": "user_001", "access_method": "chat", "alert_id": "missing"},
    )

    assert bad_method.status_code == 422
    assert unknown_alert.status_code == 404
    assert client.get("/safety/resources/access", params={"user_id": "user_001"}).json() == []


def test_safety_plan_versions(client):
    plan = client.get("/safety/plans/user_001", params={"couple_id": "couple_001"}).json()
    assert plan["version"] == 1
    assert plan["couple_id"] == "couple_001"

    response = client.patch(
        "/safety/plans/user_001",
        json={"coping_strategies": ["Walk the dog"], "updated_by": "therapist_9"},
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["version"] == 2
    assert updated["coping_strategies"] == ["Walk the dog"]
    assert updated["updated_by"] == "therapist_9"

    history = client.get("/safety/plans/user_001/history").json()
    assert [p["version"] for p in history] == [1, 2]


def test_safety_plan_update_requires_author(client):
    response = client.patch("/safety/plans/user_001", json={"coping_strategies": []})

    assert response.status_code == 422


def test_service_unavailable_without_coordinator():
    app.state.coordinator = None
    client = TestClient(app)

    response = client.post("/safety/evaluate", json={"user_id": "u", "text": "hello"})

    assert response.status_code == 503


def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/health/live").json()["status"] == "alive"
    assert client.get("/").json()["name"] == "sparq-safety"


def test_readiness_without_redis(client):
    """Redis is required for readiness; in-memory persistence reports disabled."""
    app.state.redis = None

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"database": "disabled", "redis": "failed"}


def test_detailed_health_shows_escalation_backlog(client):
    app.state.redis = None
    evaluate(client, "I want to die")

    data = client.get("/health/detailed").json()

    assert data["escalation"]["status"] == "ok"
    assert data["escalation"]["active_alerts"] == 1
    assert data["escalation"]["pending_notifications"] == 0
    assert data["escalation"]["manual_interventions"] == 0
