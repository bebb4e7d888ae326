"""Outbound email: magic links and temporary passwords.

Provides a pluggable sender. SMTP is used when configured; otherwise sends
are skipped and logged. Callers treat a failed send as non-fatal.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from urllib.parse import quote

from raisetracker.config import settings

logger = logging.getLogger("raisetracker.email")

MAGIC_LINK_SUBJECT = "Your sign-in link - RaiseTracker"
PASSWORD_RESET_SUBJECT = "Your temporary password - RaiseTracker"


def build_magic_link_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/validate-magic-link?token={quote(token, safe='')}"


def magic_link_body(url: str, ttl_minutes: int) -> str:
    return (
        "Hello,\n\n"
        "Click the link below to sign in to RaiseTracker:\n\n"
        f"{url}\n\n"
        f"This link will expire in {ttl_minutes} minutes.\n\n"
        "If you did not request this link, please ignore this email.\n"
    )


def password_reset_body(password: str) -> str:
    return (
        "Hello,\n\n"
        f"Your temporary RaiseTracker password is: {password}\n\n"
        "Please change it after signing in.\n"
    )


class EmailSender(ABC):
    """Abstract email sender. Returns True when the message was handed off."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> bool:
        ...

    async def send_magic_link(self, to: str, token: str, base_url: str) -> bool:
        url = build_magic_link_url(base_url, token)
        return await self.send(
            to, MAGIC_LINK_SUBJECT, magic_link_body(url, settings.magic_link_ttl_minutes)
        )

    async def send_password_reset(self, to: str, password: str) -> bool:
        return await self.send(to, PASSWORD_RESET_SUBJECT, password_reset_body(password))


class SmtpEmailSender(EmailSender):
    """Plain SMTP (optionally STARTTLS). The blocking client runs in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        *,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        await asyncio.to_thread(self._deliver, message)
        logger.info("Sent %r to %s", subject, to)
        return True


class DisabledEmailSender(EmailSender):
    """Used when SMTP is not configured. Nothing is sent."""

    async def send(self, to: str, subject: str, body: str) -> bool:
        logger.warning("Email not configured; skipping %r to %s", subject, to)
        return False


@dataclass
class OutboxMessage:
    to: str
    subject: str
    body: str


class InMemoryEmailSender(EmailSender):
    """Collects messages instead of sending them (tests, local development)."""

    def __init__(self):
        self.outbox: list[OutboxMessage] = []

    async def send(self, to: str, subject: str, body: str) -> bool:
        self.outbox.append(OutboxMessage(to=to, subject=subject, body=body))
        return True


async def send_magic_link_in_background(to: str, token: str, base_url: str) -> None:
    """Fire-and-forget wrapper: failures are logged, never raised to the request."""
    try:
        await get_email_sender().send_magic_link(to, token, base_url)
    except Exception:
        logger.exception("Error sending magic link email to %s", to)


async def send_password_reset_in_background(to: str, password: str) -> None:
    try:
        await get_email_sender().send_password_reset(to, password)
    except Exception:
        logger.exception("Error sending password reset email to %s", to)


# Module-level singleton, replaceable in tests
_sender: EmailSender | None = None


def get_email_sender() -> EmailSender:
    global _sender
    if _sender is None:
        if settings.smtp_configured:
            _sender = SmtpEmailSender(
                settings.smtp_host,
                settings.smtp_port,
                settings.email_from,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
            )
        else:
            _sender = DisabledEmailSender()
    return _sender


def set_email_sender(sender: EmailSender | None) -> None:
    global _sender
    _sender = sender
