# app/services/completion/dispatcher.py
"""
Background Dispatcher
Hands a completion payload to Phase 2 without waiting for it.

Two transports:
- BACKGROUND_DISPATCH_URL set: one authenticated POST to a separate worker,
  carrying the x-background-secret header.
- otherwise: a bounded in-process queue drained by a fixed worker pool that
  is started and stopped with the application lifespan.
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import BackgroundTask

logger = get_logger(__name__)

BACKGROUND_SECRET_HEADER = "x-background-secret"

TaskHandler = Callable[[BackgroundTask], Awaitable[object]]


class DispatchError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class BackgroundDispatcher:
    def __init__(
        self,
        dispatch_url: str | None = None,
        secret: str | None = None,
        queue_size: int | None = None,
        workers: int | None = None,
    ):
        self.dispatch_url = dispatch_url
        self.secret = secret
        self.queue_size = queue_size or settings.BACKGROUND_QUEUE_SIZE
        self.worker_count = workers or settings.BACKGROUND_WORKERS
        self._queue: asyncio.Queue | None = None
        self._workers: list[asyncio.Task] = []
        self._handler: TaskHandler | None = None
        self.processed = 0
        self.failed = 0

    @property
    def remote(self) -> bool:
        return bool(self.dispatch_url or settings.BACKGROUND_DISPATCH_URL)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue else 0

    def start(self, handler: TaskHandler) -> None:
        """Start the in-process worker pool (no-op for remote dispatch)."""
        if self.remote or self.running:
            return
        self._handler = handler
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"background-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(
            "Background workers started", workers=self.worker_count, queue_size=self.queue_size
        )

    async def stop(self) -> None:
        """Stop the pool; queued tasks that have not started are dropped."""
        if not self._workers:
            return
        dropped = self.queue_depth
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Background workers stopped", dropped_tasks=dropped)

    async def dispatch(self, task: BackgroundTask) -> None:
        """
        Queue or send one task. Never waits for the task itself.

        Raises:
            DispatchError: the task could not be handed off
        """
        if self.remote:
            await self._dispatch_remote(task)
            return

        if not self._queue or not self.running:
            raise DispatchError("Background workers are not running", operation="dispatch")
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull as e:
            raise DispatchError("Background queue is full", operation="dispatch") from e

        logger.info("Background task queued", task_type=task.task_type, queue_depth=self.queue_depth)

    async def _dispatch_remote(self, task: BackgroundTask) -> None:
        url = self.dispatch_url or settings.BACKGROUND_DISPATCH_URL
        secret = self.secret or settings.background_secret()
        if not secret:
            raise DispatchError("BACKGROUND_FUNCTION_SECRET not configured", operation="dispatch")

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    url,
                    content=task.model_dump_json(),
                    headers={"Content-Type": "application/json", BACKGROUND_SECRET_HEADER: secret},
                )
        except httpx.HTTPError as e:
            raise DispatchError(f"Background dispatch failed: {e}", operation="dispatch") from e

        if not response.is_success:
            raise DispatchError(
                f"Background dispatch rejected: HTTP {response.status_code}", operation="dispatch"
            )
        logger.info("Background task dispatched", task_type=task.task_type, status=response.status_code)

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._handler(task)
                self.processed += 1
            except Exception as e:
                # Phase 2 failures never reach the user
                self.failed += 1
                logger.error(
                    "Background task failed",
                    worker_id=worker_id,
                    task_type=task.task_type,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._queue.task_done()

    def get_status(self) -> dict:
        return {
            "mode": "remote" if self.remote else "in_process",
            "running": self.running,
            "workers": len(self._workers),
            "queue_depth": self.queue_depth,
            "processed": self.processed,
            "failed": self.failed,
        }


# Singleton instance for application use
background_dispatcher = BackgroundDispatcher()
