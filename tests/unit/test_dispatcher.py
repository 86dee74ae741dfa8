import asyncio
from datetime import datetime

import pytest

from app.models.domain.completion_domain import WarehouseCompletionPayload
from app.services.completion.dispatcher import (
    BACKGROUND_SECRET_HEADER,
    BackgroundDispatcher,
    DispatchError,
)
from tests.fakes import LONDON


def make_task(item_id="w-1"):
    return WarehouseCompletionPayload(
        item_id=item_id,
        job_name="Kit",
        signature="iVBORw0KGgo=",
        completed_at=datetime(2026, 3, 5, 15, 0, tzinfo=LONDON),
    )


@pytest.fixture
def local_mode(monkeypatch):
    monkeypatch.setattr("app.services.completion.dispatcher.settings.BACKGROUND_DISPATCH_URL", None)


@pytest.mark.asyncio
async def test_queued_tasks_are_processed_by_workers(local_mode):
    handled = []

    async def handler(task):
        handled.append(task.item_id)

    dispatcher = BackgroundDispatcher(queue_size=10, workers=2)
    dispatcher.start(handler)
    try:
        await dispatcher.dispatch(make_task("a"))
        await dispatcher.dispatch(make_task("b"))
        await asyncio.wait_for(dispatcher._queue.join(), timeout=1)
    finally:
        await dispatcher.stop()

    assert sorted(handled) == ["a", "b"]
    assert dispatcher.processed == 2
    assert not dispatcher.running


@pytest.mark.asyncio
async def test_handler_failure_is_contained(local_mode):
    async def handler(task):
        raise RuntimeError("smtp down")

    dispatcher = BackgroundDispatcher(queue_size=10, workers=1)
    dispatcher.start(handler)
    try:
        await dispatcher.dispatch(make_task())
        await asyncio.wait_for(dispatcher._queue.join(), timeout=1)
        assert dispatcher.running
    finally:
        await dispatcher.stop()

    assert dispatcher.failed == 1


@pytest.mark.asyncio
async def test_dispatch_without_workers_fails(local_mode):
    with pytest.raises(DispatchError):
        await BackgroundDispatcher().dispatch(make_task())


@pytest.mark.asyncio
async def test_full_queue_rejects_dispatch(local_mode):
    release = asyncio.Event()

    async def handler(task):
        await release.wait()

    dispatcher = BackgroundDispatcher(queue_size=1, workers=1)
    dispatcher.start(handler)
    try:
        await dispatcher.dispatch(make_task("running"))
        await asyncio.sleep(0)  # worker picks up the first task
        await dispatcher.dispatch(make_task("queued"))
        with pytest.raises(DispatchError):
            await dispatcher.dispatch(make_task("overflow"))
    finally:
        release.set()
        await dispatcher.stop()


@pytest.mark.asyncio
async def test_remote_dispatch_posts_with_secret(httpx_mock):
    httpx_mock.add_response(url="https://worker.example.com/internal/completion-background", json={})
    dispatcher = BackgroundDispatcher(
        dispatch_url="https://worker.example.com/internal/completion-background",
        secret="s3cret",
    )

    await dispatcher.dispatch(make_task())

    request = httpx_mock.get_request()
    assert request.headers[BACKGROUND_SECRET_HEADER] == "s3cret"
    assert b'"task_type":"warehouse_collection"' in request.content


@pytest.mark.asyncio
async def test_remote_dispatch_rejection_raises(httpx_mock):
    httpx_mock.add_response(status_code=401)
    dispatcher = BackgroundDispatcher(dispatch_url="https://worker.example.com/run", secret="s3cret")

    with pytest.raises(DispatchError):
        await dispatcher.dispatch(make_task())
