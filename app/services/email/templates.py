# app/services/email/templates.py
"""
Email bodies for reminders, staff alerts and client notifications.
Plain f-string HTML; every interpolated value is escaped.
"""

from datetime import date, datetime
from html import escape

from app.config import settings
from app.models.domain.job_domain import JobKind
from app.services.email.mailer import Attachment, EmailMessage

FOOTER = "This is an automated message from the Ooosh Freelancer Portal."

REMINDER_URGENCY = {
    1: "Please complete it when you have a moment",
    2: "Please complete it as soon as possible",
    3: "Please complete it immediately",
}


def _ordinal(day: int) -> str:
    if 11 <= day <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")


def _to_date(value: date | str | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def format_date_short(value: date | str | None) -> str:
    """Subject-line date, e.g. "27th Jan, 2026"."""
    parsed = _to_date(value)
    if not parsed:
        return str(value or "TBC")
    return f"{parsed.day}{_ordinal(parsed.day)} {parsed.strftime('%b')}, {parsed.year}"


def format_date_nice(value: date | str | None) -> str:
    """Body date, e.g. "Tuesday, 27 January 2026"."""
    parsed = _to_date(value)
    if not parsed:
        return str(value or "TBC")
    return f"{parsed.strftime('%A')}, {parsed.day} {parsed.strftime('%B %Y')}"


def kind_icon(kind: JobKind) -> str:
    return "📦" if kind is JobKind.DELIVERY else "🚚"


def _layout(title: str, colour: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {colour}; padding: 24px; border-radius: 12px 12px 0 0; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 22px;">{escape(title)}</h1>
  </div>
  <div style="background: #f8f9fa; padding: 24px; border-radius: 0 0 12px 12px;">
    {body}
    <p style="font-size: 12px; color: #999; margin-top: 30px; text-align: center;">{FOOTER}</p>
  </div>
</body>
</html>"""


def _button(url: str, label: str, colour: str) -> str:
    return (
        f'<div style="text-align: center; margin-top: 25px;">'
        f'<a href="{escape(url)}" style="display: inline-block; background: {colour}; color: white; '
        f'text-decoration: none; padding: 12px 30px; border-radius: 6px; font-weight: 600;">'
        f"{escape(label)}</a></div>"
    )


def _job_panel(kind: JobKind, venue: str, job_date: date | str | None, extra_rows: list[str]) -> str:
    rows = "".join(f'<p style="margin: 6px 0; color: #555;">{row}</p>' for row in extra_rows)
    return (
        '<div style="background: white; border-radius: 8px; padding: 20px; margin-bottom: 20px;">'
        f'<h2 style="margin: 0 0 12px 0; font-size: 18px;">{kind_icon(kind)} {kind.title} - {escape(venue)}</h2>'
        f'<p style="margin: 6px 0; color: #555;"><strong>Date:</strong> {escape(format_date_nice(job_date))}</p>'
        f"{rows}</div>"
    )


# =================================================================
# ESCALATION
# =================================================================


def completion_reminder(
    *,
    job_id: str,
    kind: JobKind,
    venue: str,
    job_date: date | str | None,
    job_time: str | None,
    driver_name: str,
    driver_email: str,
    level: int,
) -> EmailMessage:
    """Reminder to the assigned driver; tone escalates with level."""
    type_label = kind.value
    urgency = REMINDER_URGENCY.get(level, REMINDER_URGENCY[3])
    prefix = "🚨 URGENT" if level >= 3 else "Reminder"
    subject = f"{prefix}: please complete your {type_label} - {venue} - {format_date_short(job_date)}"

    complete_url = f"{settings.app_url()}/job/{job_id}/complete"
    body = (
        f"<p>Hi {escape(driver_name)},</p>"
        f"<p>We noticed you haven't marked your {type_label} as complete yet. {urgency} - "
        "if there was a problem with this job, please reply to this email or contact us asap.</p>"
        + _job_panel(kind, venue, job_date, [f"<strong>Time:</strong> {escape(job_time or 'TBC')}"])
        + _button(complete_url, f"Complete {kind.title}", "#dc3545" if level >= 3 else "#667eea")
    )
    text = (
        f"Hi {driver_name},\n\nWe noticed you haven't marked your {type_label} as complete yet. "
        f"{urgency}.\n\n{kind.title} - {venue} - {format_date_nice(job_date)}\n\n"
        f"Complete it here: {complete_url}\n"
    )
    return EmailMessage(
        to=[driver_email],
        subject=subject,
        html=_layout(f"{kind.title} completion reminder", "#667eea", body),
        text=text,
    )


def staff_escalation(
    *,
    job_id: str,
    kind: JobKind,
    venue: str,
    job_date: date | str | None,
    job_time: str | None,
    driver_name: str,
    driver_email: str,
    reminders_sent: int,
) -> EmailMessage:
    """Staff-facing alert once the final reminder has gone out."""
    subject = f"⚠️ {kind.title} - {venue} - not completed after {reminders_sent} reminders"
    item_url = settings.monday_item_url(settings.MONDAY_BOARD_ID_DELIVERIES, job_id)
    body = (
        f"<p>The {kind.value} below has still not been marked complete after "
        f"{reminders_sent} reminders to the driver.</p>"
        + _job_panel(
            kind,
            venue,
            job_date,
            [
                f"<strong>Time:</strong> {escape(job_time or 'TBC')}",
                f"<strong>Driver:</strong> {escape(driver_name)} ({escape(driver_email)})",
            ],
        )
        + _button(item_url, "Open in Monday", "#ffc107")
    )
    text = (
        f"{kind.title} - {venue} - {format_date_nice(job_date)} has not been completed after "
        f"{reminders_sent} reminders.\nDriver: {driver_name} ({driver_email})\n{item_url}\n"
    )
    return EmailMessage(
        to=[settings.STAFF_ALERT_EMAIL],
        subject=subject,
        html=_layout("Job not completed", "#ffc107", body),
        text=text,
        reply_to=driver_email,
    )


# =================================================================
# COMPLETION
# =================================================================


def driver_notes_alert(
    *,
    job_id: str,
    kind: JobKind,
    venue: str,
    job_date: date | str | None,
    driver_name: str,
    notes: str,
    related_jobs: list,
) -> EmailMessage:
    """Staff alert for a driver's completion note, with related upcoming jobs."""
    app_url = settings.app_url()
    related_html = ""
    if related_jobs:
        items = "".join(
            f'<li style="margin: 8px 0;">{kind_icon(rj.kind)} <strong>{rj.kind.title}</strong> - '
            f"{escape(rj.name)} ({escape(format_date_short(rj.date))}) "
            f'<a href="{escape(app_url)}/job/{escape(rj.id)}">View →</a></li>'
            for rj in related_jobs
        )
        related_html = (
            '<div style="background: #fff3cd; border-radius: 8px; padding: 15px; margin-top: 20px;">'
            '<h3 style="margin: 0 0 10px 0; font-size: 14px;">⚠️ Related Upcoming Jobs (same venue or HH ref)</h3>'
            '<p style="margin: 0 0 10px 0; font-size: 13px;">Consider if this note should be added to any of these:</p>'
            f'<ul style="margin: 0; padding-left: 20px; list-style: none;">{items}</ul></div>'
        )

    body = (
        _job_panel(kind, venue, job_date, [f"<strong>Driver:</strong> {escape(driver_name)}"])
        + '<div style="background: white; border-radius: 8px; padding: 20px;">'
        '<p style="margin: 0 0 10px 0; color: #666; font-size: 13px;">DRIVER\'S NOTE</p>'
        f'<p style="margin: 0; white-space: pre-wrap;">{escape(notes)}</p></div>'
        + related_html
        + _button(f"{app_url}/job/{job_id}", "View Job in Portal", "#17a2b8")
    )
    return EmailMessage(
        to=[settings.STAFF_ALERT_EMAIL],
        subject=f"📝 Driver Note: {kind.title} - {venue} - {format_date_short(job_date)}",
        html=_layout("Driver Note Submitted", "#17a2b8", body),
        text=f"Driver note from {driver_name} for {kind.value} at {venue}:\n\n{notes}\n",
    )


def client_delivery_note(
    *,
    recipients: list[str],
    venue: str,
    job_date: date | str | None,
    hh_ref: str | None,
    pdf: bytes,
    filename: str,
) -> EmailMessage:
    ref = hh_ref or "N/A"
    body = (
        "<p>Hello,</p>"
        f"<p>Your equipment has been delivered to <strong>{escape(venue)}</strong>. "
        "Please find the delivery note attached for your records.</p>"
        f"<p><strong>Date:</strong> {escape(format_date_nice(job_date))}<br>"
        f"<strong>Job reference:</strong> {escape(ref)}</p>"
        "<p>If anything is missing or not as expected, please reply to this email.</p>"
    )
    return EmailMessage(
        to=recipients,
        subject=f"📦 Delivery Note - {venue} - {format_date_short(job_date)} (Ref: {ref})",
        html=_layout("Delivery Complete", "#28a745", body),
        text=f"Your equipment has been delivered to {venue}. The delivery note is attached.\n",
        attachments=[Attachment(filename=filename, content=pdf)],
        reply_to=settings.STAFF_ALERT_EMAIL,
    )


def client_collection_confirmation(
    *,
    recipients: list[str],
    venue: str,
    job_date: date | str | None,
    hh_ref: str | None,
) -> EmailMessage:
    ref = hh_ref or "N/A"
    body = (
        "<p>Hello,</p>"
        f"<p>We have collected the equipment from <strong>{escape(venue)}</strong>. "
        "Thank you for hiring with Ooosh Tours.</p>"
        f"<p><strong>Date:</strong> {escape(format_date_nice(job_date))}<br>"
        f"<strong>Job reference:</strong> {escape(ref)}</p>"
    )
    return EmailMessage(
        to=recipients,
        subject=f"🚚 Collection Complete - {venue} - {format_date_short(job_date)} (Ref: {ref})",
        html=_layout("Collection Complete", "#28a745", body),
        text=f"We have collected the equipment from {venue}. Thank you for hiring with Ooosh Tours.\n",
        reply_to=settings.STAFF_ALERT_EMAIL,
    )


def warehouse_collection_note(
    *,
    recipients: list[str],
    job_name: str,
    client_name: str,
    hire_start_date: date | str | None,
    hh_ref: str | None,
    pdf: bytes,
    filename: str,
) -> EmailMessage:
    """Sent when a client collects equipment from the warehouse."""
    ref = hh_ref or "N/A"
    greeting = f"Hi {escape(client_name)}," if client_name else "Hello,"
    body = (
        f"<p>{greeting}</p>"
        f"<p>Thanks for collecting your equipment for <strong>{escape(job_name)}</strong>. "
        "The signed collection note is attached for your records.</p>"
        f"<p><strong>Hire start:</strong> {escape(format_date_nice(hire_start_date))}<br>"
        f"<strong>Job reference:</strong> {escape(ref)}</p>"
    )
    return EmailMessage(
        to=recipients,
        subject=f"📦 Equipment Collected - {job_name} (Ref: {ref})",
        html=_layout("Equipment Collected", "#28a745", body),
        text=f"Thanks for collecting your equipment for {job_name}. The collection note is attached.\n",
        attachments=[Attachment(filename=filename, content=pdf)],
        reply_to=settings.STAFF_ALERT_EMAIL,
    )


def driver_completion_receipt(
    *,
    job_id: str,
    kind: JobKind,
    venue: str,
    job_date: date | str | None,
    driver_name: str,
    driver_email: str,
    completed_at: datetime,
    customer_present: bool,
) -> EmailMessage:
    """Confirmation to the driver that the completion was recorded."""
    present = "Customer signed" if customer_present else "Customer not present (photos taken)"
    body = (
        f"<p>Hi {escape(driver_name)},</p>"
        f"<p>Thanks - your {kind.value} has been marked as complete.</p>"
        + _job_panel(
            kind,
            venue,
            job_date,
            [
                f"<strong>Completed:</strong> {escape(completed_at.strftime('%H:%M, %d %b %Y'))}",
                f"<strong>Handover:</strong> {present}",
            ],
        )
        + _button(f"{settings.app_url()}/job/{job_id}", "View Job", "#28a745")
    )
    return EmailMessage(
        to=[driver_email],
        subject=f"✅ {kind.title} complete - {venue} - {format_date_short(job_date)}",
        html=_layout(f"{kind.title} Complete", "#28a745", body),
        text=f"Thanks {driver_name}, your {kind.value} at {venue} has been marked as complete.\n",
    )
