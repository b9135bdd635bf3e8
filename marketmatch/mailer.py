"""Outgoing mail for account flows.

Auth code depends on the `Mailer` protocol only. `ConsoleMailer` logs each
message and is used when no SMTP host is configured; `SMTPMailer` delivers
through aiosmtplib. Both raise `MailDeliveryError` on failure so callers
decide what the failure means for state they already wrote.
"""

from __future__ import annotations
import logging
from email.message import EmailMessage
from typing import Optional, Protocol, runtime_checkable
import aiosmtplib

from .config import settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Raised by a mailer when a message could not be handed off."""

    pass


@runtime_checkable
class Mailer(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


class ConsoleMailer:
    """Writes messages to the log instead of sending them. Development default."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail to %s: %s\n%s", to, subject, body)


class SMTPMailer:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        start_tls: bool = True,
        sender: str = "no-reply@marketmatch.local",
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.start_tls = start_tls
        self.sender = sender
        self.timeout = timeout

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, to: str, subject: str, body: str) -> None:
        message = self.build_message(to, subject, body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s via %s:%s failed: %s", to, self.host, self.port, exc)
            raise MailDeliveryError(str(exc)) from exc
        logger.info("Mail sent to %s: %s", to, subject)


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    """FastAPI dependency returning the process-wide mailer, built on first use."""
    global _mailer
    if _mailer is None:
        if settings.SMTP_HOST:
            _mailer = SMTPMailer(
                settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USERNAME,
                password=settings.SMTP_PASSWORD,
                start_tls=settings.SMTP_START_TLS,
                sender=settings.MAIL_FROM,
                timeout=settings.MAIL_TIMEOUT_SECONDS,
            )
        else:
            _mailer = ConsoleMailer()
    return _mailer
