from datetime import date, datetime

import pytest

from app.models.domain.job_domain import EscalationPolicy
from app.services.escalation.scheduler import EscalationJobError, EscalationScheduler
from app.services.infrastructure.claim_store import EscalationClaimStore
from app.services.infrastructure.expiring_store import ExpiringStore
from app.services.monday.columns import DC_COLUMNS
from app.services.reminder_rate_limiter import ReminderRateLimiter
from tests.fakes import DRIVER_EMAIL, LONDON, FakeRecordStore, RecordingMailer, make_item


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_scheduler(store, mailer, now, limit_per_hour=10):
    clock = Clock(now)
    scheduler = EscalationScheduler(
        record_store=store,
        mailer=mailer,
        claims=EscalationClaimStore(local_store=ExpiringStore(), ttl_seconds=3600),
        rate_limiter=ReminderRateLimiter(ExpiringStore(), limit_per_hour=limit_per_hour),
        policy=EscalationPolicy({1: 2.0, 2: 6.0, 3: 14.0}),
        tz=LONDON,
        business_hours=(7, 22),
        clock=clock,
    )
    return scheduler, clock


def level_of(store, job_id):
    for col in store.items[job_id]["column_values"]:
        if col["id"] == DC_COLUMNS["completion_reminder_level"]:
            return col["text"]
    return ""


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def now():
    return datetime(2026, 3, 5, 15, 0, tzinfo=LONDON)


@pytest.mark.asyncio
async def test_first_threshold_sends_level_one_reminder(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    store.add_freelancer(name="Dave Driver")
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["jobs_checked"] == 1
    assert summary["reminders_sent"] == 1
    assert summary["staff_notifications_sent"] == 0
    assert level_of(store, "1001") == "1"
    operation, message = mailer.sent[0]
    assert operation == "completion_reminder"
    assert message.to == [DRIVER_EMAIL]
    assert "Dave Driver" in message.html
    assert "when you have a moment" in message.html


@pytest.mark.asyncio
async def test_below_threshold_sends_nothing(mailer, now):
    store = FakeRecordStore([make_item(job_time="13:30")])
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["reminders_sent"] == 0
    assert summary["skip_reasons"] == {"threshold_not_reached": 1}
    assert store.writes == []


@pytest.mark.asyncio
async def test_repeat_run_at_same_time_sends_nothing_new(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    scheduler, _ = make_scheduler(store, mailer, now)

    await scheduler.run_once()
    second = await scheduler.run_once()

    assert second["reminders_sent"] == 0
    assert len(mailer.sent) == 1
    assert level_of(store, "1001") == "1"


@pytest.mark.asyncio
async def test_overdue_job_climbs_one_level_per_run_then_alerts_staff(mailer, now):
    # Scheduled yesterday: every threshold has already passed
    store = FakeRecordStore([make_item(job_date="2026-03-04", job_time="12:00")])
    scheduler, _ = make_scheduler(store, mailer, now)

    levels = []
    summaries = []
    for _ in range(4):
        summaries.append(await scheduler.run_once())
        levels.append(level_of(store, "1001"))

    assert levels == ["1", "2", "3", "3"]
    assert mailer.operations() == [
        "completion_reminder",
        "completion_reminder",
        "completion_reminder",
        "staff_escalation",
    ]
    assert mailer.sent[2][1].subject.startswith("🚨 URGENT")
    assert summaries[-1]["jobs_checked"] == 0


@pytest.mark.asyncio
async def test_outside_business_hours_does_nothing(mailer):
    store = FakeRecordStore([make_item(job_time="12:00")])
    scheduler, _ = make_scheduler(store, mailer, datetime(2026, 3, 5, 22, 0, tzinfo=LONDON))

    summary = await scheduler.run_once()

    assert summary["skipped"] is True
    assert summary["reason"] == "outside_business_hours"
    assert mailer.sent == []
    assert store.writes == []


@pytest.mark.asyncio
async def test_business_hours_boundaries(mailer):
    scheduler, _ = make_scheduler(FakeRecordStore(), mailer, datetime(2026, 3, 5, 7, tzinfo=LONDON))

    assert scheduler.within_business_hours(datetime(2026, 3, 5, 7, 0, tzinfo=LONDON))
    assert scheduler.within_business_hours(datetime(2026, 3, 5, 21, 59, tzinfo=LONDON))
    assert not scheduler.within_business_hours(datetime(2026, 3, 5, 6, 59, tzinfo=LONDON))
    assert not scheduler.within_business_hours(datetime(2026, 3, 5, 22, 0, tzinfo=LONDON))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "item,reason",
    [
        (make_item(completed_at="2026-03-05"), "completed"),
        (make_item(status="Working on it"), "status_not_confirmed"),
        (make_item(driver_email=""), "no_assignee"),
        (make_item(job_date="2026-03-03"), "outside_date_window"),
        (make_item(level="3"), "max_level_reached"),
        (make_item(job_time=""), "no_scheduled_time"),
        (make_item(job_time="18:00"), "not_yet_due"),
    ],
)
async def test_ineligible_jobs_are_not_candidates(mailer, now, item, reason):
    store = FakeRecordStore([item])
    scheduler, _ = make_scheduler(store, mailer, now)

    job = (await store.list_jobs(LONDON))[0]
    assert scheduler.candidate_skip_reason(job, now) == reason

    summary = await scheduler.run_once()
    assert summary["jobs_checked"] == 0
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_job_completed_after_listing_is_skipped(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    scheduler, _ = make_scheduler(store, mailer, now)
    original_list = store.list_jobs

    async def list_then_complete(tz):
        jobs = await original_list(tz)
        await store.mark_job_completed("1001", "", now, "All done!")
        return jobs

    store.list_jobs = list_then_complete

    summary = await scheduler.run_once()

    assert summary["jobs_checked"] == 1
    assert summary["reminders_sent"] == 0
    assert summary["skip_reasons"] == {"completed": 1}


@pytest.mark.asyncio
async def test_job_mute_suppresses_without_touching_level(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    store.add_freelancer(muted_job_ids_raw="999, 1001")
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["skip_reasons"] == {"job_mute": 1}
    assert mailer.sent == []
    assert level_of(store, "1001") == ""


@pytest.mark.asyncio
async def test_global_mute_suppresses_reminders(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    store.add_freelancer(notifications_paused_until=date(2026, 3, 6))
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["skip_reasons"] == {"global_mute": 1}
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_failed_level_write_sends_nothing_and_retries_next_cycle(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    store.fail.add("set_escalation_level")
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["write_failures"] == 1
    assert summary["reminders_sent"] == 0
    assert mailer.sent == []

    # Claim was released, so the next cycle can take the same level
    store.fail.clear()
    summary = await scheduler.run_once()
    assert summary["reminders_sent"] == 1
    assert level_of(store, "1001") == "1"


@pytest.mark.asyncio
async def test_failed_reminder_keeps_level_and_is_not_resent(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    mailer.fail.add("completion_reminder")
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["reminder_failures"] == 1
    assert level_of(store, "1001") == "1"

    mailer.fail.clear()
    summary = await scheduler.run_once()
    assert summary["reminders_sent"] == 0
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_staff_alert_still_sent_when_final_reminder_fails(mailer, now):
    store = FakeRecordStore([make_item(job_date="2026-03-04", level="2")])
    mailer.fail.add("completion_reminder")
    scheduler, _ = make_scheduler(store, mailer, now)

    summary = await scheduler.run_once()

    assert summary["reminder_failures"] == 1
    assert summary["staff_notifications_sent"] == 1
    assert mailer.operations() == ["staff_escalation"]


@pytest.mark.asyncio
async def test_rate_limited_recipient_is_skipped_before_write(mailer, now):
    store = FakeRecordStore(
        [
            make_item(item_id="1001", job_time="12:00"),
            make_item(item_id="1002", job_time="12:30"),
        ]
    )
    scheduler, _ = make_scheduler(store, mailer, now, limit_per_hour=1)

    summary = await scheduler.run_once()

    assert summary["reminders_sent"] == 1
    assert summary["skip_reasons"] == {"rate_limited": 1}
    assert sorted([level_of(store, "1001"), level_of(store, "1002")]) == ["", "1"]


@pytest.mark.asyncio
async def test_claimed_level_is_skipped(mailer, now):
    store = FakeRecordStore([make_item(job_time="12:00")])
    scheduler, _ = make_scheduler(store, mailer, now)
    await scheduler.claims.claim("1001", 1, "other-run")

    summary = await scheduler.run_once()

    assert summary["skip_reasons"] == {"claimed_by_other_run": 1}
    assert store.writes == []
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(mailer, now):
    scheduler, _ = make_scheduler(FakeRecordStore(), mailer, now)
    scheduler.is_running = True

    assert await scheduler.run_once() == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_list_failure_raises(mailer, now):
    store = FakeRecordStore()
    store.fail.add("list_jobs")
    scheduler, _ = make_scheduler(store, mailer, now)

    with pytest.raises(EscalationJobError):
        await scheduler.run_once()
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_one_job_error_does_not_stop_the_run(mailer, now):
    store = FakeRecordStore(
        [make_item(item_id="1001", job_time="12:00"), make_item(item_id="1002", job_time="12:00")]
    )
    scheduler, _ = make_scheduler(store, mailer, now)
    original_get = store.get_job

    async def flaky_get(job_id, tz):
        if job_id == "1001":
            raise RuntimeError("boom")
        return await original_get(job_id, tz)

    store.get_job = flaky_get

    summary = await scheduler.run_once()

    assert summary["errors_count"] == 1
    assert summary["reminders_sent"] == 1


def test_status_reports_policy_and_backend(mailer, now):
    scheduler, _ = make_scheduler(FakeRecordStore(), mailer, now)

    status = scheduler.get_status()

    assert status["claim_backend"] == "memory"
    assert status["thresholds_hours"] == {1: 2.0, 2: 6.0, 3: 14.0}
    assert status["last_run_metrics"] is None
