"""
Outbound user notifications (welcome and password-reset mail).

AuthService only knows the NotificationSender protocol. Two senders ship:

  - LoggingNotificationSender: writes the notification to the application log.
    Default for development and tests; nothing leaves the process.
  - SmtpNotificationSender: plain SMTP via the standard library, run in a
    worker thread so the event loop isn't blocked.

MAIL_DRIVER selects one at startup (build_notification_sender). Welcome mail
is fire-and-forget through BackgroundNotifier; password-reset mail is awaited
by the caller.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Protocol

from keystone.config import Settings

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "Welcome to Keystone!"
PASSWORD_RESET_SUBJECT = "Reset Your Password"


class NotificationSender(Protocol):
    async def send_welcome(self, email: str, context: dict[str, Any]) -> None: ...

    async def send_password_reset(self, email: str, context: dict[str, Any]) -> None: ...


def render_welcome(context: dict[str, Any]) -> str:
    return (
        f"Hi {context.get('name', '')},\n\n"
        "Your account is ready. Head to your dashboard to get started:\n"
        f"{context.get('dashboard_url', '')}\n"
    )


def render_password_reset(context: dict[str, Any]) -> str:
    return (
        f"Hi {context.get('name', '')},\n\n"
        "Someone asked to reset the password for this account. If that was you,\n"
        "follow the link below. It expires shortly.\n\n"
        f"{context.get('reset_link', '')}\n\n"
        "If you didn't ask for this, you can ignore this message.\n"
    )


class LoggingNotificationSender:
    """Logs notifications instead of sending them. Never fails."""

    async def send_welcome(self, email: str, context: dict[str, Any]) -> None:
        logger.info("Welcome notification for %s", email)

    async def send_password_reset(self, email: str, context: dict[str, Any]) -> None:
        # The reset link is a bearer credential; keep it out of the log
        logger.info("Password reset notification for %s", email)


class SmtpNotificationSender:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
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

    async def _send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        await asyncio.to_thread(self._deliver, message)
        logger.info("Sent %r to %s", subject, to)

    async def send_welcome(self, email: str, context: dict[str, Any]) -> None:
        await self._send(email, WELCOME_SUBJECT, render_welcome(context))

    async def send_password_reset(self, email: str, context: dict[str, Any]) -> None:
        await self._send(email, PASSWORD_RESET_SUBJECT, render_password_reset(context))


class BackgroundNotifier:
    """
    Runs best-effort notifications outside the request that triggered them.

    Failures are logged and swallowed; the caller never waits. Pending tasks
    are tracked so shutdown (and tests) can wait for them with drain().
    """

    def __init__(self, sender: NotificationSender):
        self.sender = sender
        self._tasks: set[asyncio.Task] = set()

    async def _run_welcome(self, email: str, context: dict[str, Any]) -> None:
        try:
            await self.sender.send_welcome(email, context)
        except Exception:
            logger.exception("Failed to send welcome notification to %s", email)

    def send_welcome(self, email: str, context: dict[str, Any]) -> asyncio.Task:
        task = asyncio.create_task(self._run_welcome(email, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


def build_notification_sender(settings: Settings) -> NotificationSender:
    if settings.MAIL_DRIVER == "smtp":
        return SmtpNotificationSender(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            sender=settings.MAIL_FROM,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
        )
    return LoggingNotificationSender()
