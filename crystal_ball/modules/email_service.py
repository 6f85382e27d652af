import html
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Protocol

import httpx

from settings import get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailDeliveryError(RuntimeError):
    pass


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    text: str | None = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)


class EmailProvider(Protocol):
    async def send(self, message: EmailMessage) -> str | None: ...


class ConsoleEmailProvider:
    """Logs messages instead of sending them and keeps them in ``outbox``."""

    def __init__(self):
        self.outbox: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> str | None:
        self.outbox.append(message)
        logger.info("Email to %s: %s", ", ".join(message.to), message.subject)
        return None


class ResendEmailProvider:
    def __init__(self, api_key: str, sender: str, client: httpx.AsyncClient | None = None):
        self.api_key = api_key
        self.sender = sender
        self._client = client

    async def send(self, message: EmailMessage) -> str | None:
        payload = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if message.cc:
            payload["cc"] = message.cc
        if message.bcc:
            payload["bcc"] = message.bcc

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=10.0)
            close_client = True
        try:
            response = await client.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        finally:
            if close_client:
                await client.aclose()

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            raise EmailDeliveryError(data.get("message") or "Failed to send email")
        return data.get("id")


@lru_cache
def get_email_provider() -> EmailProvider:
    cfg = get_settings()
    provider = (cfg.email_provider or "").strip().lower()
    if provider == "console":
        return ConsoleEmailProvider()
    if provider == "resend":
        if not cfg.resend_api_key:
            raise RuntimeError("RESEND_API_KEY environment variable is not set")
        return ResendEmailProvider(cfg.resend_api_key, cfg.email_from)
    raise RuntimeError(f"Unsupported EMAIL_PROVIDER: {cfg.email_provider}")


def _page(heading: str, body: str) -> str:
    year = datetime.now().year
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{heading}</title></head>"
        "<body style=\"font-family: sans-serif; line-height: 1.6; color: #333; "
        "max-width: 600px; margin: 0 auto; padding: 20px;\">"
        f"<h2>{heading}</h2>{body}"
        f"<p style=\"color: #999; font-size: 12px;\">&copy; {year} Merlin's Crystal Ball</p>"
        "</body></html>"
    )


def account_created(email: str, password: str, login_url: str, user_name: str | None = None) -> EmailMessage:
    greeting = f"Hi {user_name}," if user_name else "Hi there,"
    body = (
        f"<p>{html.escape(greeting)}</p>"
        "<p>An administrator has created an account for you. Here are your login credentials:</p>"
        f"<p><strong>Email:</strong> {html.escape(email)}<br>"
        f"<strong>Temporary Password:</strong> <code>{html.escape(password)}</code></p>"
        "<p><strong>You will be required to change this password on your first login.</strong></p>"
        f"<p><a href=\"{html.escape(login_url, quote=True)}\">Login to Your Account</a></p>"
    )
    text = "\n".join(
        [
            "Welcome to Merlin's Crystal Ball!",
            "",
            greeting,
            "",
            "An administrator has created an account for you. Here are your login credentials:",
            "",
            f"Email: {email}",
            f"Temporary Password: {password}",
            "",
            "You will be required to change this password on your first login.",
            "",
            f"Login here: {login_url}",
        ]
    )
    return EmailMessage(
        to=[email],
        subject="Welcome to Merlin's Crystal Ball - Account Created",
        html=_page("Welcome to Merlin's Crystal Ball!", body),
        text=text,
    )


def password_reset(email: str, reset_url: str) -> EmailMessage:
    body = (
        "<p>We received a request to reset your password. The link below is valid for 24 hours.</p>"
        f"<p><a href=\"{html.escape(reset_url, quote=True)}\">Reset Password</a></p>"
        "<p>If you did not ask for this, you can ignore this email.</p>"
    )
    text = (
        "We received a request to reset your password. The link below is valid for 24 hours.\n\n"
        f"{reset_url}\n\n"
        "If you did not ask for this, you can ignore this email."
    )
    return EmailMessage(
        to=[email],
        subject="Reset your Merlin's Crystal Ball password",
        html=_page("Password reset", body),
        text=text,
    )


async def send_best_effort(message: EmailMessage) -> bool:
    try:
        await get_email_provider().send(message)
        return True
    except Exception:
        logger.warning("Failed to send email to %s", ", ".join(message.to), exc_info=True)
        return False
