"""
Participant Accreditation Platform
Notification Sender — best-effort outbound messages on terminal outcomes.

The workflow engine calls ``notify_rejection`` / ``notify_finalization``
after its transaction commits. Delivery is fire-and-forget:

    - with NOTIFICATIONS_ASYNC (default) the send runs on a daemon thread
      inside its own app context, so SMTP latency never reaches the caller;
    - otherwise (tests, CLI) it runs inline.

Either way, any exception raised by a sender is logged and swallowed.

Usage:
    from app.services.notification_sender import get_sender, notify_rejection

    notify_rejection(get_sender(), participant, remarks="Missing passport")
"""

from __future__ import annotations

import logging
import threading

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.services.email_service import EmailService, remarks_context

logger = logging.getLogger(__name__)


class NotificationSender:
    """Outbound message channel. ``send`` returns nothing the engine consumes."""

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        *,
        html: str | None = None,
        category: str = "system",
        participant_id: int | None = None,
    ) -> None:
        raise NotImplementedError


class EmailNotificationSender(NotificationSender):
    """Delivers through EmailService and commits the EmailLog row."""

    def send(self, to, subject, body, *, html=None, category="system", participant_id=None):
        try:
            EmailService.send(
                to_email=to,
                subject=subject,
                text_body=body,
                html_body=html,
                category=category,
                participant_id=participant_id,
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise


_default_sender = EmailNotificationSender()


def get_sender() -> NotificationSender:
    """Sender configured on the app (``app.extensions['notification_sender']``) or email."""
    return current_app.extensions.get("notification_sender", _default_sender)


# ── Dispatch ─────────────────────────────────────────────────────────────────


def _deliver(sender: NotificationSender, message: dict) -> None:
    try:
        sender.send(**message)
    except Exception:
        logger.exception(
            "Notification delivery failed: to=%s subject='%s'",
            message.get("to"), message.get("subject"),
            extra={"participant_id": message.get("participant_id")},
        )


def _deliver_in_context(app, sender: NotificationSender, message: dict) -> None:
    with app.app_context():
        try:
            _deliver(sender, message)
        finally:
            db.session.remove()


def dispatch(sender: NotificationSender, message: dict) -> threading.Thread | None:
    """Fire-and-forget a message. Returns the worker thread in async mode."""
    app = current_app._get_current_object()
    if not app.config.get("NOTIFICATIONS_ASYNC", True):
        _deliver(sender, message)
        return None

    worker = threading.Thread(
        target=_deliver_in_context,
        args=(app, sender, message),
        name=f"notify-{message.get('category', 'system')}",
        daemon=True,
    )
    worker.start()
    return worker


# ── Message builders ─────────────────────────────────────────────────────────


def notify_rejection(sender: NotificationSender, participant, remarks: str | None = None):
    """Rejection notice for a participant sent back to the start step."""
    rendered = EmailService.render("request_rejected", remarks_context(remarks))
    return dispatch(sender, {
        "to": participant.email,
        "subject": rendered["subject"],
        "body": rendered["text"],
        "html": rendered["html"],
        "category": "rejection",
        "participant_id": participant.id,
    })


def notify_finalization(sender: NotificationSender, participant):
    """Finalization notice for an archived participant."""
    rendered = EmailService.render("request_finalized", {})
    return dispatch(sender, {
        "to": participant.email,
        "subject": rendered["subject"],
        "body": rendered["text"],
        "html": rendered["html"],
        "category": "finalization",
        "participant_id": participant.id,
    })
