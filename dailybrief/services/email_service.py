import asyncio
from datetime import date
from pathlib import Path
from typing import Protocol

import resend
from jinja2 import Environment, FileSystemLoader

from dailybrief.config import get_settings
from dailybrief.core.errors import DeliveryError
from dailybrief.core.logging import get_logger
from dailybrief.core.retry import RetryConfig, retry_with_backoff
from dailybrief.schemas.briefing import BriefingEmail

logger = get_logger(__name__)

# Initialize Jinja2 environment for email templates
template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)

TEST_PREFIX = "[TEST] "


class DeliveryChannel(Protocol):
    async def send(self, email: BriefingEmail) -> None: ...


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


def briefing_subject(on_date: date, is_test: bool = False) -> str:
    """Default subject, e.g. ``Your Daily Briefing - Sunday, October 18, 2026``."""
    prefix = TEST_PREFIX if is_test else ""
    return f"{prefix}Your Daily Briefing - {on_date:%A, %B} {on_date.day}, {on_date.year}"


def render_briefing_html(content: str, subject: str, is_test: bool = False) -> str:
    """Render briefing text into the HTML template, escaped, keeping line breaks."""
    paragraphs = [block.splitlines() for block in content.strip().split("\n\n") if block.strip()]
    template = jinja_env.get_template("briefing.html")
    return template.render(subject=subject, paragraphs=paragraphs, is_test=is_test)


class ResendDeliveryChannel:
    """Delivery channel sending briefings through Resend."""

    def __init__(self, retry_config: RetryConfig | None = None) -> None:
        self.retry_config = retry_config or RetryConfig(max_attempts=3, backoff_base=2.0)

    async def send(self, email: BriefingEmail) -> None:
        """
        Send one briefing.

        Args:
            email: Rendered briefing with recipient(s) and reply-to address

        Raises:
            DeliveryError: if the provider rejects the message or is not configured
        """
        _init_resend()
        settings = get_settings()

        recipients = [addr.strip() for addr in email.recipient.split(",") if addr.strip()]
        if not recipients:
            raise DeliveryError("No recipient address", attempted=False)

        if not settings.resend_api_key:
            logger.bind(recipient=email.recipient).warning("resend_api_key_not_set")
            raise DeliveryError("RESEND_API_KEY not set", attempted=False)

        subject = email.subject or briefing_subject(date.today(), email.is_test)
        text_body = f"[TEST EMAIL]\n\n{email.content}" if email.is_test else email.content
        params: dict = {
            "from": f"Daily Briefing <{settings.email_from}>",
            "to": recipients,
            "subject": subject,
            "html": render_briefing_html(email.content, subject, email.is_test),
            "text": text_body,
            "reply_to": email.reply_to_address,
        }

        logger.bind(recipient=email.recipient, is_test=email.is_test).info("sending_briefing")

        async def _send() -> dict:
            return await asyncio.to_thread(resend.Emails.send, params)

        try:
            response = await retry_with_backoff(
                _send, self.retry_config, operation_name="resend_send_briefing"
            )
        except Exception as e:
            raise DeliveryError(f"Failed to send email: {e}") from e

        logger.bind(
            recipient=email.recipient,
            message_id=(response or {}).get("id"),
        ).info("briefing_sent")
