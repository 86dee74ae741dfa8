"""
Retrying Mutation Client
Wraps every third-party call (Monday.com reads/writes, file uploads, SMTP sends,
HireHop fetches) with bounded exponential backoff.

Backoff is pure exponential: base_delay * 2 ** (attempt - 1), no jitter.
Operations are passed as zero-argument factories so that each attempt builds
its request from scratch; a multipart upload body is a one-shot stream and is
rebuilt on every attempt.
"""

import asyncio
import smtplib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal, TypeVar

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ErrorClass = Literal["retryable", "terminal"]

# Errors that arrive as message text (Monday returns some of these with HTTP 200)
RETRYABLE_MESSAGE_MARKERS = (
    "rate limit",
    "ratelimit",
    "complexity budget",
    "too many requests",
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "socket hang up",
)

RETRYABLE_EXCEPTION_TYPES: tuple[type[BaseException], ...] = (
    httpx.TransportError,  # timeouts, connect errors, protocol resets
    ConnectionError,  # ConnectionResetError, ConnectionRefusedError, ...
    TimeoutError,
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            retryable_status_codes=frozenset(settings.RETRY_STATUS_CODES),
        )


@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt; lives only for the duration of a single execute() call."""

    attempt: int
    delay_seconds: float
    classification: ErrorClass
    error: str


def classify_error(error: BaseException, policy: RetryPolicy) -> ErrorClass:
    """
    Classify an error as retryable or terminal.

    Order: explicit `retryable` flag set by the raising client, transport-level
    exception types, HTTP status code, then message markers.
    """
    explicit = getattr(error, "retryable", None)
    if explicit is not None:
        return "retryable" if explicit else "terminal"

    if isinstance(error, RETRYABLE_EXCEPTION_TYPES):
        return "retryable"

    status_code = getattr(error, "status_code", None)
    if status_code is None and isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
    if status_code is not None:
        return "retryable" if status_code in policy.retryable_status_codes else "terminal"

    message = str(error).lower()
    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return "retryable"

    return "terminal"


class RetryingMutationClient:
    """
    Bounded exponential-backoff executor for external calls.

    Adds no side effects of its own beyond timing and logging.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> "RetryingMutationClient":
        return cls(RetryPolicy.from_settings())

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        idempotent: bool = True,
        **log_context,
    ) -> T:
        """
        Run an operation, retrying transient failures.

        Args:
            operation: Zero-argument factory producing a fresh awaitable per attempt
            operation_name: Name used in logs
            idempotent: False for create-style writes; those get a single attempt
            **log_context: Extra structured fields for every log line

        Returns:
            The operation's result

        Raises:
            The last error, unchanged, when it is terminal or attempts are exhausted
        """
        max_attempts = self.policy.max_attempts if idempotent else 1
        start_time = time.monotonic()

        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
            except Exception as e:
                classification = classify_error(e, self.policy)
                record = RetryAttempt(
                    attempt=attempt,
                    delay_seconds=self.policy.delay_for(attempt),
                    classification=classification,
                    error=str(e),
                )

                if classification == "terminal":
                    logger.error(
                        "External call failed with terminal error",
                        operation=operation_name,
                        attempt=attempt,
                        error=record.error,
                        error_type=type(e).__name__,
                        **log_context,
                    )
                    raise

                if attempt >= max_attempts:
                    logger.error(
                        "External call failed after all retries",
                        operation=operation_name,
                        attempts=attempt,
                        error=record.error,
                        error_type=type(e).__name__,
                        elapsed_seconds=round(time.monotonic() - start_time, 3),
                        **log_context,
                    )
                    raise

                logger.warning(
                    "External call failed, retrying",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_seconds=record.delay_seconds,
                    error=record.error,
                    **log_context,
                )
                await self._sleep(record.delay_seconds)
                continue

            if attempt > 1:
                logger.info(
                    "External call succeeded after retry",
                    operation=operation_name,
                    attempt=attempt,
                    elapsed_seconds=round(time.monotonic() - start_time, 3),
                    **log_context,
                )
            else:
                logger.debug("External call succeeded", operation=operation_name, **log_context)
            return result

        raise RuntimeError(f"{operation_name} retry loop exhausted")


# Singleton instance for application use
retry_client = RetryingMutationClient.from_settings()
