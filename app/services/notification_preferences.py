# app/services/notification_preferences.py
"""
Notification Preference Gate
Decides whether an outbound reminder to a recipient is muted. The gate only
suppresses delivery; escalation bookkeeping is never touched here.
"""

from datetime import date, datetime
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.models.domain.job_domain import MutePreference
from app.services.monday.client import FreelancerRecord

logger = get_logger(__name__)


class FreelancerLookup(Protocol):
    async def find_freelancer(self, email: str) -> FreelancerRecord | None: ...


def parse_muted_job_ids(raw: str | None) -> set[str]:
    """Comma-separated job ids, trimmed; matching is exact and case-sensitive."""
    if not raw:
        return set()
    return {part.strip() for part in raw.split(",") if part.strip()}


def is_globally_muted(pref: MutePreference, today: date) -> bool:
    # muted_until is stored as the day after the last muted day
    return pref.muted_until is not None and pref.muted_until > today


def is_job_muted(pref: MutePreference, job_id: str) -> bool:
    return job_id in parse_muted_job_ids(pref.muted_job_ids_raw)


def evaluate(pref: MutePreference | None, job_id: str, now: datetime) -> str | None:
    """Reason the send is suppressed ("global_mute" / "job_mute"), or None."""
    if pref is None:
        return None
    if is_globally_muted(pref, now.date()):
        return "global_mute"
    if is_job_muted(pref, job_id):
        return "job_mute"
    return None


def preference_from_record(record: FreelancerRecord | None, recipient: str) -> MutePreference | None:
    if record is None:
        return None
    return MutePreference(
        recipient=recipient,
        muted_until=record.notifications_paused_until,
        muted_job_ids_raw=record.muted_job_ids_raw,
    )


class NotificationPreferenceGate:
    """
    Reads the recipient's mute settings fresh on every check, so a mute
    applied mid-cycle is honoured on the next read.
    """

    def __init__(self, lookup: FreelancerLookup):
        self._lookup = lookup

    async def load(self, recipient: str) -> FreelancerRecord | None:
        """Freelancer record for the recipient; None when missing or unreadable."""
        try:
            return await self._lookup.find_freelancer(recipient)
        except Exception as e:
            # Unreadable preferences do not block reminders
            logger.warning("Mute preferences unavailable", recipient=recipient, error=str(e))
            return None

    async def is_suppressed(self, recipient: str, job_id: str, now: datetime) -> bool:
        record = await self.load(recipient)
        reason = evaluate(preference_from_record(record, recipient), job_id, now)
        if reason:
            logger.info("Notification suppressed", recipient=recipient, job_id=job_id, reason=reason)
        return reason is not None
