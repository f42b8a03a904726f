"""
Participant Accreditation Platform
Email Service.

Provides email sending with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    MAIL_TIMEOUT    SMTP socket timeout in seconds (default: 10)
"""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from app.models import db
from app.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "request_rejected": {
        "subject": "Request Rejected",
        "text": "Your request has been rejected.{remarks_text}",
        "html": "<p>Your request has been rejected.{remarks_html}</p>",
    },
    "request_finalized": {
        "subject": "Request Finalized",
        "text": "Your request has been finalized.",
        "html": (
            "<p>Your request has been finalized. "
            "You can collect your badge at the registration desk.</p>"
        ),
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
        category: str = "system",
        participant_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it. Flushes; the caller commits.

        If SMTP is not configured, the email is logged with status='sent'
        to simulate sending without actual delivery. SMTP failures are
        recorded on the EmailLog row (status='failed') and not raised.

        Returns:
            The EmailLog record for this email.
        """
        log = EmailLog(
            recipient_email=to_email,
            subject=subject,
            category=category,
            status="queued",
            participant_id=participant_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' category=%s",
                to_email, subject, category,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, subject=subject,
                           text_body=text_body, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def render(cls, template_name: str, context: dict[str, Any]) -> dict[str, str]:
        """Interpolate a named template; missing keys render as ``{key}``."""
        template = cls.get_template(template_name)
        if not template:
            raise KeyError(f"Email template not found: {template_name}")
        return {part: text.format_map(_SafeDict(context)) for part, text in template.items()}

    @staticmethod
    def _send_smtp(*, to_email: str, subject: str, text_body: str, html_body: str | None) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")
        timeout = cfg.get("MAIL_TIMEOUT", 10)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=timeout) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


def remarks_context(remarks: str | None) -> dict[str, str]:
    """Template context for an optional free-text remark."""
    if not remarks:
        return {"remarks_text": "", "remarks_html": ""}
    return {
        "remarks_text": f"\n\n{remarks}",
        "remarks_html": f"<br><br>{html.escape(remarks)}",
    }


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
