"""
Email rendering and SMTP delivery.

Templates live in ``templates/email/<name>.html``. The subject line of each
template is declared in ``EMAIL_SUBJECTS`` and rendered with the same context.
"""
import asyncio
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

templates_dir = Path(__file__).parent.parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(templates_dir)),
    autoescape=select_autoescape(["html"], default_for_string=False),
)

EMAIL_SUBJECTS = {
    "otp": "Your verification code",
    "password_reset": "Password reset code",
    "welcome": "Welcome to Workhub, {{ name }}",
    "new_signup": "New {{ role }} signup awaiting approval",
    "id_assigned": "Your account has been approved",
    "status_update": "Your account status: {{ status }}",
    "task_assigned": "You were assigned: {{ task_title }}",
    "task_status_changed": "Task status changed: {{ task_title }}",
    "task_completed": "Task completed: {{ task_title }}",
    "comment_mention": "{{ author_name }} mentioned you on {{ task_title }}",
    "board_invitation": "You were added to board {{ board_title }}",
}


class EmailDeliveryError(Exception):
    pass


def _full_context(context: dict) -> dict:
    return {"site_url": get_settings().SITE_URL, **context}


def render_subject(template: str, context: dict) -> str:
    if template not in EMAIL_SUBJECTS:
        raise ValueError(f"Unknown email template: {template}")
    return _env.from_string(EMAIL_SUBJECTS[template]).render(**_full_context(context))


def render_email(template: str, context: dict) -> tuple[str, str]:
    """Return (subject, html) for a catalogue template."""
    subject = render_subject(template, context)
    html = _env.get_template(f"{template}.html").render(**_full_context(context))
    return subject, html


class EmailSender:
    """Thin SMTP client. ``send`` raises EmailDeliveryError on any failure."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def send(self, recipient: str, subject: str, html: str) -> None:
        if not self.settings.smtp_configured:
            logger.info("SMTP not configured, email to %s not sent: %s", recipient, subject)
            raise EmailDeliveryError("SMTP is not configured")
        try:
            asyncio.run(self._send(recipient, subject, html))
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(str(exc)) from exc
        logger.info("Email sent to %s: %s", recipient, subject)

    async def _send(self, recipient: str, subject: str, html: str) -> None:
        message = MIMEMultipart("alternative")
        message["From"] = self.settings.EMAIL_FROM
        message["To"] = recipient
        message["Subject"] = subject
        message.attach(MIMEText(html, "html"))

        await aiosmtplib.send(
            message,
            hostname=self.settings.EMAIL_SMTP_HOST,
            port=self.settings.EMAIL_SMTP_PORT,
            username=self.settings.EMAIL_SMTP_USER or None,
            password=self.settings.EMAIL_SMTP_PASSWORD or None,
            start_tls=self.settings.EMAIL_USE_TLS,
        )
