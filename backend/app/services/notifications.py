"""Job outcome mails.

Delivery is best-effort: a failed send is logged and never changes the
outcome of the job that triggered it.
"""

from __future__ import annotations

import smtplib
from collections.abc import Sequence
from dataclasses import dataclass, field
from email.message import EmailMessage

import structlog

from backend.app.config import Settings
from backend.app.errors import is_filtered


logger = structlog.get_logger()

OPERATIONS = {
    "table_archive": ("Archive", "archiving", "archive"),
    "table_restore": ("Restore", "restoring", "restore"),
}


@dataclass(frozen=True)
class Notification:
    to: str
    subject: str
    body: str
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()


@dataclass
class Notifier:
    smtp_host: str = ""
    smtp_port: int = 25
    mail_from: str = "table-vault@localhost"
    failure_cc: tuple[str, ...] = ()
    failure_bcc: tuple[str, ...] = ()
    sent: list[Notification] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Notifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            mail_from=settings.mail_from,
            failure_cc=settings.job_failure_cc,
            failure_bcc=settings.job_failure_bcc,
        )

    def notify_success(self, job_type: str, table: str, to: str | None, nomailer: bool = False) -> Notification | None:
        label, verb, _ = OPERATIONS[job_type]
        return self._send(to, nomailer, f"{label} succeeded", f"Succeeded in {verb} {table}")

    def notify_failure(
        self,
        job_type: str,
        table: str,
        error: BaseException,
        to: str | None,
        nomailer: bool = False,
    ) -> Notification | None:
        label, _, noun = OPERATIONS[job_type]
        body = f"Failed to {noun} {table}\nThe following error description might be helpful: '{error}'"
        # requester-caused errors are not escalated
        if is_filtered(error):
            cc: Sequence[str] = ()
            bcc: Sequence[str] = ()
        else:
            cc, bcc = self.failure_cc, self.failure_bcc
        return self._send(to, nomailer, f"ERROR: {label} failed", body, cc=cc, bcc=bcc)

    def _send(
        self,
        to: str | None,
        nomailer: bool,
        subject: str,
        body: str,
        cc: Sequence[str] = (),
        bcc: Sequence[str] = (),
    ) -> Notification | None:
        if nomailer or not to:
            return None
        notification = Notification(to=to, subject=subject, body=body, cc=tuple(cc), bcc=tuple(bcc))
        self.sent.append(notification)
        if not self.smtp_host:
            logger.info("notification_skipped", reason="smtp_not_configured", subject=subject, to=to)
            return notification

        message = EmailMessage()
        message["From"] = self.mail_from
        message["To"] = to
        message["Subject"] = subject
        if notification.cc:
            message["Cc"] = ", ".join(notification.cc)
        message.set_content(body)
        recipients = [to, *notification.cc, *notification.bcc]
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as smtp:
                smtp.send_message(message, to_addrs=recipients)
        except (OSError, smtplib.SMTPException) as exc:
            logger.warning("notification_failed", subject=subject, to=to, error=str(exc))
            return notification
        logger.info("notification_sent", subject=subject, to=to, cc=len(notification.cc), bcc=len(notification.bcc))
        return notification
