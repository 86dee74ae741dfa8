# app/services/reminder_rate_limiter.py
"""
Reminder Rate Limiter
Caps reminder emails per recipient per rolling hour. Counters are keyed by
recipient and expire lazily in the in-memory expiring store.
"""

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.expiring_store import ExpiringStore

logger = get_logger(__name__)

WINDOW_SECONDS = 3600


class ReminderRateLimiter:
    def __init__(self, store: ExpiringStore | None = None, limit_per_hour: int | None = None):
        self._store = store or ExpiringStore()
        self.limit = limit_per_hour if limit_per_hour is not None else settings.REMINDER_RATE_LIMIT_PER_HOUR

    @staticmethod
    def _key(recipient: str) -> str:
        return f"reminder_rate:{recipient.strip().lower()}"

    async def remaining(self, recipient: str) -> int:
        used = int(await self._store.get(self._key(recipient)) or 0)
        return max(0, self.limit - used)

    async def is_limited(self, recipient: str) -> bool:
        """True when the recipient has used up this hour's reminders."""
        limited = await self.remaining(recipient) <= 0
        if limited:
            logger.warning("Reminder rate limit reached", recipient=recipient, limit=self.limit)
        return limited

    async def record_send(self, recipient: str) -> int:
        """Count one reminder; the window starts at the first send."""
        return await self._store.incr_with_ttl(self._key(recipient), WINDOW_SECONDS)


# Singleton instance for application use
reminder_rate_limiter = ReminderRateLimiter()
