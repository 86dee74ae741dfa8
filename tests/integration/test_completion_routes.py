from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from app.auth.verify import auth_dependency
from app.main import app
from app.services.completion.pipeline import CompletionPipeline
from app.services.completion.warehouse_pipeline import WarehouseCompletionPipeline
from tests.fakes import DRIVER_EMAIL, LONDON, FakeDispatcher, FakeRecordStore, make_item

PNG = "data:image/png;base64,iVBORw0KGgo="
NOW = datetime(2026, 3, 5, 15, 0, tzinfo=LONDON)


@pytest.fixture
def store():
    return FakeRecordStore([make_item(), make_item(item_id="2002", completed_at="2026-03-04")])


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def client(monkeypatch, store, dispatcher, apply_auth_override):
    pipeline = CompletionPipeline(
        record_store=store, dispatcher=dispatcher, tz=LONDON, max_photos=5, clock=lambda: NOW
    )
    warehouse = WarehouseCompletionPipeline(dispatcher=dispatcher, tz=LONDON, clock=lambda: NOW)
    monkeypatch.setattr("app.routes.jobs.completion_pipeline", pipeline)
    monkeypatch.setattr("app.routes.warehouse.warehouse_pipeline", warehouse)
    monkeypatch.setattr("app.auth.verify.settings.WAREHOUSE_PIN", "4321")
    apply_auth_override(app)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_complete_job_success(client, store, dispatcher):
    response = client.post(
        "/jobs/1001/complete",
        json={"customer_present": True, "signature": PNG, "notes": "All good"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["job_id"] == "1001"
    assert data["warnings"] == []
    assert len(dispatcher.dispatched) == 1


def test_complete_job_validation_error(client, store):
    response = client.post("/jobs/1001/complete", json={"customer_present": False, "photos": []})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "validation"
    assert store.writes == []


def test_complete_job_not_assigned(client):
    app.dependency_overrides[auth_dependency] = lambda: {"email": "someone.else@example.com"}

    response = client.post("/jobs/1001/complete", json={"customer_present": True, "signature": PNG})

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not-found-or-not-assigned"


def test_complete_job_already_completed(client):
    response = client.post("/jobs/2002/complete", json={"customer_present": True, "signature": PNG})

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "already-completed"


def test_complete_job_write_failure(client, store):
    store.fail.add("mark_job_completed")

    response = client.post("/jobs/1001/complete", json={"customer_present": True, "signature": PNG})

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "write-failed"


def test_complete_job_upload_warning_is_still_success(client, store):
    store.fail.add("upload_file_to_column")

    response = client.post("/jobs/1001/complete", json={"customer_present": True, "signature": PNG})

    assert response.status_code == 200
    assert response.json()["warnings"] == ["Failed to upload signature"]


def test_complete_job_rejects_missing_body_field(client):
    response = client.post("/jobs/1001/complete", json={"signature": PNG})
    assert response.status_code == 422


def test_session_token_identifies_driver(monkeypatch, store, dispatcher):
    monkeypatch.setattr("app.auth.verify.settings.SESSION_SECRET", "session-secret")
    monkeypatch.setattr(
        "app.routes.jobs.completion_pipeline",
        CompletionPipeline(record_store=store, dispatcher=dispatcher, tz=LONDON, clock=lambda: NOW),
    )
    token = jwt.encode(
        {"email": "Driver@Example.com", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        "session-secret",
        algorithm="HS256",
    )

    response = TestClient(app).post(
        "/jobs/1001/complete",
        json={"customer_present": True, "signature": PNG},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    assert dispatcher.dispatched[0].driver_email == DRIVER_EMAIL


def test_invalid_session_token_is_rejected(monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.SESSION_SECRET", "session-secret")
    token = jwt.encode({"email": DRIVER_EMAIL}, "wrong-secret", algorithm="HS256")

    response = TestClient(app).post(
        "/jobs/1001/complete",
        json={"customer_present": True, "signature": PNG},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401


def test_session_token_without_expiry_is_rejected(monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.SESSION_SECRET", "session-secret")
    token = jwt.encode({"email": DRIVER_EMAIL}, "session-secret", algorithm="HS256")

    response = TestClient(app).post(
        "/jobs/1001/complete",
        json={"customer_present": True, "signature": PNG},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401
    assert "exp" in response.json()["detail"]


def test_warehouse_collection_queued(client, dispatcher):
    response = client.post(
        "/warehouse/collections/w-1/complete",
        json={"signature": PNG, "job_name": "Band Kit", "client_emails": ["sam@example.com"]},
        headers={"x-warehouse-pin": "4321"},
    )

    assert response.status_code == 200
    assert response.json()["queued"] is True
    assert dispatcher.dispatched[0].task_type == "warehouse_collection"


def test_warehouse_collection_wrong_pin(client, dispatcher):
    response = client.post(
        "/warehouse/collections/w-1/complete",
        json={"signature": PNG, "job_name": "Band Kit"},
        headers={"x-warehouse-pin": "0000"},
    )

    assert response.status_code == 401
    assert dispatcher.dispatched == []


def test_warehouse_collection_requires_signature(client):
    response = client.post(
        "/warehouse/collections/w-1/complete",
        json={"job_name": "Band Kit"},
        headers={"x-warehouse-pin": "4321"},
    )

    assert response.status_code == 400


def test_warehouse_collection_dispatch_failure(client, dispatcher):
    dispatcher.fail = True

    response = client.post(
        "/warehouse/collections/w-1/complete",
        json={"signature": PNG, "job_name": "Band Kit"},
        headers={"x-warehouse-pin": "4321"},
    )

    assert response.status_code == 503
