# app/services/email/mailer.py
"""
SMTP mail transport.
Blocking smtplib sends run in a worker thread and go through the retry client;
SMTP 4xx replies and dropped connections are retried, 5xx replies are not.
"""

import asyncio
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, parseaddr

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.retry_client import RetryingMutationClient, retry_client

logger = get_logger(__name__)


class MailerError(Exception):
    """Email could not be delivered to the SMTP relay."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        smtp_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.smtp_code = smtp_code
        self.retryable = retryable
        self.recoverable = bool(retryable)


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_subtype: str = "pdf"


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    reply_to: str | None = None


def build_mime(message: EmailMessage, sender: str) -> MIMEMultipart:
    """Mixed container with an alternative text/html body and any attachments."""
    root = MIMEMultipart("mixed")
    root["Subject"] = message.subject
    root["From"] = sender
    root["To"] = ", ".join(message.to)
    if message.reply_to:
        root["Reply-To"] = message.reply_to

    body = MIMEMultipart("alternative")
    body.attach(MIMEText(message.text or "", "plain", "utf-8"))
    body.attach(MIMEText(message.html, "html", "utf-8"))
    root.attach(body)

    for attachment in message.attachments:
        part = MIMEApplication(attachment.content, _subtype=attachment.mime_subtype)
        part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
        root.attach(part)

    return root


class Mailer:
    def __init__(self, retry: RetryingMutationClient | None = None):
        self._retry = retry or retry_client

    @property
    def configured(self) -> bool:
        return bool(settings.SMTP_HOST and settings.SMTP_USER and settings.SMTP_PASSWORD)

    def _sender(self) -> tuple[str, str]:
        """(header value, envelope address) for EMAIL_FROM."""
        name, address = parseaddr(settings.EMAIL_FROM)
        address = address or settings.SMTP_USER or ""
        return formataddr((name, address)) if name else address, address

    def _send_blocking(self, message: EmailMessage) -> None:
        header_from, envelope_from = self._sender()
        mime = build_mime(message, header_from)

        try:
            with smtplib.SMTP(
                settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS
            ) as server:
                server.ehlo()
                if settings.SMTP_USE_TLS:
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(envelope_from, message.to, mime.as_string())
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError):
            raise
        except smtplib.SMTPRecipientsRefused as e:
            raise MailerError(f"All recipients refused: {list(e.recipients)}", retryable=False) from e
        except smtplib.SMTPResponseException as e:
            raise MailerError(
                f"SMTP error {e.smtp_code}: {e.smtp_error!r}",
                smtp_code=e.smtp_code,
                retryable=400 <= e.smtp_code < 500,
            ) from e

    async def send(self, message: EmailMessage, *, operation: str = "send_email", **log_context) -> None:
        """
        Deliver one message.

        Raises:
            MailerError: SMTP not configured, no recipients, or delivery failed
        """
        recipients = [r.strip() for r in message.to if r and r.strip()]
        if not recipients:
            raise MailerError("No recipients", operation=operation, retryable=False)
        if not self.configured:
            raise MailerError("SMTP not configured", operation=operation, retryable=False)
        message.to = recipients

        try:
            await self._retry.execute(
                lambda: asyncio.to_thread(self._send_blocking, message),
                operation_name=f"smtp.{operation}",
                recipients=len(recipients),
                **log_context,
            )
        except MailerError as e:
            e.operation = operation
            raise
        except Exception as e:
            raise MailerError(f"Email send failed: {e}", operation=operation) from e

        logger.info(
            "Email sent",
            operation=operation,
            recipients=len(recipients),
            subject=message.subject[:80],
            attachments=len(message.attachments),
            **log_context,
        )


# Singleton instance for application use
mailer = Mailer()
