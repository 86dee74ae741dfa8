# app/models/domain/job_domain.py
"""
Job Domain Models
Domain models for delivery/collection jobs held on the Monday.com board.
Remote column values are loosely-typed labels; they are mapped to closed enums
here so the services never string-match status text themselves.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from app.services.monday.columns import DC_COLUMNS

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)
_NAME_PREFIX = re.compile(r"^(DEL|COL)\s*[-:]\s*", re.IGNORECASE)


class JobStatus(str, Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    DONE = "done"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def from_label(cls, label: str | None) -> "JobStatus":
        """Map a Monday status label onto the closed status set."""
        normalized = (label or "").strip().lower()
        if not normalized:
            return cls.UNKNOWN
        if "all arranged & email driver" in normalized:
            return cls.CONFIRMED
        if "done" in normalized:
            return cls.DONE
        if "not needed" in normalized or "cancelled" in normalized:
            return cls.CANCELLED
        if any(s in normalized for s in ("arrang", "working on it", "to do")):
            return cls.PENDING_CONFIRMATION
        return cls.UNKNOWN


class JobKind(str, Enum):
    DELIVERY = "delivery"
    COLLECTION = "collection"

    @classmethod
    def from_label(cls, label: str | None) -> "JobKind":
        return cls.DELIVERY if "delivery" in (label or "").lower() else cls.COLLECTION

    @property
    def title(self) -> str:
        return "Delivery" if self is JobKind.DELIVERY else "Collection"


def parse_time_of_day(raw: str | None) -> time | None:
    """
    Parse a job time.

    Accepts Monday's JSON hour value ({"hour":14,"minute":30}),
    24h text ("14:30") and 12h text ("2:30 PM").
    """
    if not raw:
        return None

    raw = raw.strip()
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict) and parsed.get("hour") is not None:
            return time(int(parsed["hour"]), int(parsed.get("minute") or 0))
    except (ValueError, TypeError):
        pass

    match = _TIME_24H.match(raw)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        return time(hours, minutes) if hours < 24 and minutes < 60 else None

    match = _TIME_12H.match(raw)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        is_pm = match.group(3).upper() == "PM"
        if is_pm and hours != 12:
            hours += 12
        if not is_pm and hours == 12:
            hours = 0
        return time(hours, minutes) if hours < 24 and minutes < 60 else None

    return None


def parse_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def column_map(item: dict) -> dict[str, dict]:
    """Index an item's column values by column id."""
    return {col.get("id"): col for col in item.get("column_values") or []}


def column_text(columns: dict[str, dict], column_id: str) -> str:
    """Mirror columns carry display_value; everything else uses text."""
    col = columns.get(column_id)
    if not col:
        return ""
    value = col.get("display_value")
    if value is None:
        value = col.get("text")
    return (value or "").strip()


def linked_item_ids(raw: str | None) -> list[str]:
    """Item ids from a connect-boards column value."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw) or {}
        return [str(p["linkedPulseId"]) for p in parsed.get("linkedPulseIds") or []]
    except (ValueError, TypeError, KeyError, AttributeError):
        return []


class Job:
    """Domain model for a delivery/collection job with escalation rules."""

    def __init__(self, item: dict, tz: tzinfo):
        columns = column_map(item)

        self.id = str(item.get("id", ""))
        self.name = item.get("name") or ""
        self.kind = JobKind.from_label(column_text(columns, DC_COLUMNS["deliver_collect"]))
        self.status_label = column_text(columns, DC_COLUMNS["status"])
        self.status = JobStatus.from_label(self.status_label)
        self.assignee_email = column_text(columns, DC_COLUMNS["driver_email_mirror"]).lower()
        self.hh_ref = column_text(columns, DC_COLUMNS["hh_ref"]) or None
        self.client_name = column_text(columns, DC_COLUMNS["client_mirror"]) or None
        self.completion_notes = column_text(columns, DC_COLUMNS["completion_notes"])

        self.scheduled_date_text = column_text(columns, DC_COLUMNS["date"])
        self.scheduled_time_text = column_text(columns, DC_COLUMNS["time_to_arrive"])
        self.scheduled_date = parse_date(self.scheduled_date_text)
        self.scheduled_time = parse_time_of_day(self.scheduled_time_text) or parse_time_of_day(
            (columns.get(DC_COLUMNS["time_to_arrive"]) or {}).get("value")
        )
        self.scheduled_at = (
            datetime.combine(self.scheduled_date, self.scheduled_time, tzinfo=tz)
            if self.scheduled_date and self.scheduled_time
            else None
        )

        self.completed_at_text = column_text(columns, DC_COLUMNS["completed_at_date"])
        self.completed_on = parse_date(self.completed_at_text)

        self.escalation_level = self._parse_level(
            column_text(columns, DC_COLUMNS["completion_reminder_level"])
        )

        self.venue_link_raw = (columns.get(DC_COLUMNS["venue_connect"]) or {}).get("value")
        self.venue_id = self._parse_linked_id(self.venue_link_raw)
        self.venue_name = (
            column_text(columns, DC_COLUMNS["venue_mirror"])
            or column_text(columns, DC_COLUMNS["venue_connect"])
            or self.display_name()
        )

    @staticmethod
    def _parse_level(raw: str) -> int:
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _parse_linked_id(raw: str | None) -> str | None:
        ids = linked_item_ids(raw)
        return ids[0] if ids else None

    def display_name(self) -> str:
        """Item name without the DEL/COL prefix."""
        return _NAME_PREFIX.sub("", self.name).strip()

    @property
    def is_completed(self) -> bool:
        return bool(self.completed_at_text)

    def is_assigned_to(self, email: str) -> bool:
        return bool(self.assignee_email) and self.assignee_email == email.strip().lower()

    def hours_since_scheduled(self, now: datetime) -> float | None:
        """Hours elapsed since the scheduled job time (negative if still ahead)."""
        if not self.scheduled_at:
            return None
        return (now - self.scheduled_at).total_seconds() / 3600

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id!r}, kind={self.kind.value}, status={self.status.value}, "
            f"level={self.escalation_level})"
        )


@dataclass(frozen=True)
class EscalationPolicy:
    """Ordered reminder schedule: level -> minimum hours after job time."""

    thresholds: dict[int, float] = field(default_factory=lambda: {1: 2.0, 2: 6.0, 3: 14.0})

    def __post_init__(self):
        levels = sorted(self.thresholds)
        if levels != list(range(1, len(levels) + 1)):
            raise ValueError("Escalation levels must be contiguous starting at 1")
        hours = [self.thresholds[level] for level in levels]
        if hours != sorted(hours):
            raise ValueError("Escalation thresholds must be non-decreasing")

    @property
    def max_level(self) -> int:
        return max(self.thresholds) if self.thresholds else 0

    def next_level(self, current_level: int, elapsed_hours: float) -> int | None:
        """
        Next level to send, or None.

        Only ever returns current_level + 1; levels are never skipped even
        when several thresholds have already passed.
        """
        if current_level >= self.max_level:
            return None
        candidate = current_level + 1
        if elapsed_hours >= self.thresholds[candidate]:
            return candidate
        return None


@dataclass
class MutePreference:
    """
    Per-recipient notification mute settings.

    muted_until holds the day AFTER the last muted day, so that
    `muted_until > today` is the whole global check.
    """

    recipient: str
    muted_until: date | None = None
    muted_job_ids_raw: str = ""


def eligibility_window(now: datetime) -> tuple[date, date]:
    """Jobs dated yesterday or today (business timezone) are scanned."""
    today = now.date()
    return today - timedelta(days=1), today
