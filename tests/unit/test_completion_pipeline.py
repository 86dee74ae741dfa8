from datetime import datetime

import pytest

from app.models.domain.completion_domain import (
    BackgroundCompletionPayload,
    CompletionError,
    CompletionFailure,
    CompletionRequest,
)
from app.models.domain.job_domain import JobKind
from app.services.completion.pipeline import CompletionPipeline, decode_media
from app.services.monday.columns import DC_COLUMNS
from tests.fakes import DRIVER_EMAIL, LONDON, FakeDispatcher, FakeRecordStore, make_item

PNG = "data:image/png;base64,iVBORw0KGgo="
JPEG = "/9j/4AAQSkZJRgABAQ=="
NOW = datetime(2026, 3, 5, 15, 0, tzinfo=LONDON)


def make_pipeline(store, dispatcher=None):
    return CompletionPipeline(
        record_store=store,
        dispatcher=dispatcher or FakeDispatcher(),
        tz=LONDON,
        max_photos=5,
        clock=lambda: NOW,
    )


def present_request(**overrides):
    values = {
        "job_id": "1001",
        "caller_email": DRIVER_EMAIL,
        "customer_present": True,
        "signature": PNG,
        "notes": "  Left by the stage door  ",
    }
    values.update(overrides)
    return CompletionRequest(**values)


def absent_request(**overrides):
    values = {
        "job_id": "1001",
        "caller_email": DRIVER_EMAIL,
        "customer_present": False,
        "photos": [JPEG, PNG],
    }
    values.update(overrides)
    return CompletionRequest(**values)


def writes_of(store, name):
    return [w for w in store.writes if w[0] == name]


@pytest.mark.asyncio
async def test_customer_present_completion(record_store):
    record_store.add_freelancer(name="Dave Driver")
    dispatcher = FakeDispatcher()
    pipeline = make_pipeline(record_store, dispatcher)

    outcome = await pipeline.complete(
        present_request(client_emails=["client@example.com"], send_client_email=True)
    )

    assert outcome.success is True
    assert outcome.warnings == []
    assert outcome.completed_at == NOW
    uploads = writes_of(record_store, "upload_file_to_column")
    assert [(u[2], u[3]) for u in uploads] == [(DC_COLUMNS["signature"], "signature-1001.png")]
    assert writes_of(record_store, "mark_job_completed") == [
        ("mark_job_completed", "1001", "Left by the stage door", "All done!")
    ]

    payload = dispatcher.dispatched[0]
    assert isinstance(payload, BackgroundCompletionPayload)
    assert payload.job_kind is JobKind.DELIVERY
    assert payload.driver_name == "Dave Driver"
    assert payload.venue_id == "555"
    assert payload.hh_ref == "HH-123"
    assert payload.notes == "Left by the stage door"
    assert payload.client_emails == ["client@example.com"]


@pytest.mark.asyncio
async def test_customer_absent_completion_flags_notes(record_store):
    dispatcher = FakeDispatcher()
    pipeline = make_pipeline(record_store, dispatcher)

    outcome = await pipeline.complete(absent_request(notes="Gate code 1234"))

    assert outcome.success is True
    uploads = writes_of(record_store, "upload_file_to_column")
    assert [u[3] for u in uploads] == ["completion-1001-1.jpg", "completion-1001-2.png"]
    assert all(u[2] == DC_COLUMNS["completion_photos"] for u in uploads)
    notes = writes_of(record_store, "mark_job_completed")[0][2]
    assert notes == "Customer not present\n\nGate code 1234"
    # The flag is for the record only; follow-up steps get the driver's own words
    assert dispatcher.dispatched[0].notes == "Gate code 1234"
    # Unknown freelancer falls back to the e-mail address
    assert dispatcher.dispatched[0].driver_name == DRIVER_EMAIL


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_factory",
    [
        lambda: present_request(signature=None),
        lambda: absent_request(signature=PNG),
        lambda: absent_request(photos=[]),
        lambda: absent_request(photos=[JPEG] * 6),
    ],
)
async def test_validation_failures_touch_nothing(record_store, request_factory):
    dispatcher = FakeDispatcher()
    pipeline = make_pipeline(record_store, dispatcher)

    with pytest.raises(CompletionError) as exc_info:
        await pipeline.complete(request_factory())

    assert exc_info.value.kind is CompletionFailure.VALIDATION
    assert record_store.writes == []
    assert dispatcher.dispatched == []


@pytest.mark.asyncio
async def test_five_photos_is_allowed(record_store):
    outcome = await make_pipeline(record_store).complete(absent_request(photos=[JPEG] * 5))
    assert outcome.success is True
    assert len(writes_of(record_store, "upload_file_to_column")) == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "job_id,caller",
    [("1001", "someone.else@example.com"), ("404", DRIVER_EMAIL)],
)
async def test_unknown_or_unassigned_job(record_store, job_id, caller):
    pipeline = make_pipeline(record_store)

    with pytest.raises(CompletionError) as exc_info:
        await pipeline.complete(present_request(job_id=job_id, caller_email=caller))

    assert exc_info.value.kind is CompletionFailure.NOT_FOUND_OR_NOT_ASSIGNED
    assert record_store.writes == []


@pytest.mark.asyncio
async def test_already_completed_job_is_rejected():
    store = FakeRecordStore([make_item(completed_at="2026-03-05")])

    with pytest.raises(CompletionError) as exc_info:
        await make_pipeline(store).complete(present_request())

    assert exc_info.value.kind is CompletionFailure.ALREADY_COMPLETED
    assert store.writes == []


@pytest.mark.asyncio
async def test_second_completion_of_same_job_is_rejected(record_store):
    pipeline = make_pipeline(record_store)
    await pipeline.complete(present_request())

    with pytest.raises(CompletionError) as exc_info:
        await pipeline.complete(present_request())

    assert exc_info.value.kind is CompletionFailure.ALREADY_COMPLETED
    assert len(writes_of(record_store, "mark_job_completed")) == 1


@pytest.mark.asyncio
async def test_upload_failure_is_a_warning(record_store):
    record_store.fail.add("upload_file_to_column")

    outcome = await make_pipeline(record_store).complete(present_request())

    assert outcome.success is True
    assert outcome.warnings == ["Failed to upload signature"]
    assert len(writes_of(record_store, "mark_job_completed")) == 1


@pytest.mark.asyncio
async def test_undecodable_photo_is_a_warning(record_store):
    outcome = await make_pipeline(record_store).complete(absent_request(photos=["not base64!!", JPEG]))

    assert outcome.success is True
    assert outcome.warnings == ["Failed to upload photo 1"]
    assert len(writes_of(record_store, "upload_file_to_column")) == 1


@pytest.mark.asyncio
async def test_completion_write_failure_is_fatal(record_store):
    record_store.fail.add("mark_job_completed")
    dispatcher = FakeDispatcher()

    with pytest.raises(CompletionError) as exc_info:
        await make_pipeline(record_store, dispatcher).complete(present_request())

    assert exc_info.value.kind is CompletionFailure.WRITE_FAILED
    assert dispatcher.dispatched == []


@pytest.mark.asyncio
async def test_read_failure_maps_to_write_failed(record_store):
    record_store.fail.add("get_job")

    with pytest.raises(CompletionError) as exc_info:
        await make_pipeline(record_store).complete(present_request())

    assert exc_info.value.kind is CompletionFailure.WRITE_FAILED


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_completion(record_store):
    outcome = await make_pipeline(record_store, FakeDispatcher(fail=True)).complete(present_request())

    assert outcome.success is True
    assert outcome.warnings == ["Follow-up emails could not be scheduled"]
    assert len(writes_of(record_store, "mark_job_completed")) == 1


def test_decode_media():
    content, mime_type = decode_media(PNG)
    assert content.startswith(b"\x89PNG")
    assert mime_type == "image/png"

    _, mime_type = decode_media(JPEG)
    assert mime_type == "image/jpeg"

    with pytest.raises(ValueError):
        decode_media("%%%")
