from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.domain.completion_domain import BackgroundCompletionPayload, WarehouseCompletionPayload
from app.services.escalation.scheduler import EscalationJobError

SECRET = "bg-secret"

JOB_TASK = {
    "task_type": "job_completion",
    "job_id": "1001",
    "job_name": "The Roundhouse",
    "job_kind": "delivery",
    "driver_email": "driver@example.com",
    "driver_name": "Dave Driver",
    "customer_present": True,
    "completed_at": "2026-03-05T15:00:00+00:00",
}

WAREHOUSE_TASK = {
    "task_type": "warehouse_collection",
    "item_id": "w-1",
    "job_name": "Band Kit",
    "signature": "iVBORw0KGgo=",
    "completed_at": "2026-03-05T15:00:00+00:00",
}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.BACKGROUND_FUNCTION_SECRET", SECRET)
    return TestClient(app)


@pytest.fixture
def process(monkeypatch):
    mock = AsyncMock(
        return_value={"task_id": "1001", "steps": {"driver_receipt": "ok"}, "duration_ms": 12.5}
    )
    monkeypatch.setattr("app.routes.internal.background_worker.process", mock)
    return mock


def test_background_task_requires_secret(client, process):
    response = client.post("/internal/completion-background", json=JOB_TASK)

    assert response.status_code == 401
    process.assert_not_awaited()


def test_background_task_wrong_secret(client, process):
    response = client.post(
        "/internal/completion-background", json=JOB_TASK, headers={"x-background-secret": "nope"}
    )
    assert response.status_code == 401


def test_job_completion_task_runs_worker(client, process):
    response = client.post(
        "/internal/completion-background", json=JOB_TASK, headers={"x-background-secret": SECRET}
    )

    assert response.status_code == 200
    assert response.json()["steps"] == {"driver_receipt": "ok"}
    task = process.await_args.args[0]
    assert isinstance(task, BackgroundCompletionPayload)


def test_warehouse_task_is_parsed_by_type(client, process):
    response = client.post(
        "/internal/completion-background", json=WAREHOUSE_TASK, headers={"x-background-secret": SECRET}
    )

    assert response.status_code == 200
    assert isinstance(process.await_args.args[0], WarehouseCompletionPayload)


def test_unknown_task_type_is_rejected(client, process):
    response = client.post(
        "/internal/completion-background",
        json={**JOB_TASK, "task_type": "mystery"},
        headers={"x-background-secret": SECRET},
    )
    assert response.status_code == 422


def test_escalation_trigger_returns_summary(client, monkeypatch):
    monkeypatch.setattr(
        "app.routes.internal.run_escalation_job",
        AsyncMock(
            return_value={
                "jobs_checked": 3,
                "reminders_sent": 2,
                "staff_notifications_sent": 1,
                "levels_advanced": 2,
                "skip_reasons": {"job_mute": 1},
                "errors_count": 0,
            }
        ),
    )

    response = client.post("/internal/escalations/run", headers={"x-background-secret": SECRET})

    assert response.status_code == 200
    data = response.json()
    assert data["reminders_sent"] == 2
    assert data["skip_reasons"] == {"job_mute": 1}
    assert data["skipped"] is False


def test_escalation_trigger_outside_hours(client, monkeypatch):
    monkeypatch.setattr(
        "app.routes.internal.run_escalation_job",
        AsyncMock(return_value={"skipped": True, "reason": "outside_business_hours"}),
    )

    response = client.post("/internal/escalations/run", headers={"x-background-secret": SECRET})

    assert response.json()["skipped"] is True
    assert response.json()["reason"] == "outside_business_hours"


def test_escalation_trigger_list_failure(client, monkeypatch):
    monkeypatch.setattr(
        "app.routes.internal.run_escalation_job",
        AsyncMock(side_effect=EscalationJobError("Failed to list jobs", operation="list_jobs")),
    )

    response = client.post("/internal/escalations/run", headers={"x-background-secret": SECRET})

    assert response.status_code == 502
