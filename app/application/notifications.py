"""
Email outbox and in-app notifications.

State changes never send email directly: they call ``enqueue_email`` inside
their own transaction, and ``dispatch_pending_emails`` (scheduler job) delivers
the rows later. Delivery is at-least-once; a row is retried until it is sent or
``OUTBOX_MAX_ATTEMPTS`` is reached.
"""
import logging

from sqlalchemy.orm import Session

from app.application.email_service import EmailDeliveryError, EmailSender, render_email, render_subject
from app.application.errors import ValidationError
from app.config import get_settings
from app.infrastructure.db.models import EmailOutboxModel, NotificationModel
from app.utils.dates import isoformat, utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = (
    "task_assigned",
    "task_due",
    "task_completed",
    "comment_mention",
    "project_update",
    "board_invitation",
)


# ── Outbox ──

def enqueue_email(db: Session, recipient: str, template: str, context: dict) -> EmailOutboxModel:
    """Add a pending email to the current transaction (flush only, caller commits)."""
    row = EmailOutboxModel(
        recipient=recipient,
        subject=render_subject(template, context),
        template=template,
        context=context,
        status="pending",
        attempts=0,
    )
    db.add(row)
    db.flush()
    return row


def dispatch_pending_emails(db: Session, sender=None, batch_size: int | None = None) -> int:
    """
    Deliver pending outbox rows, oldest first. Each row is committed on its
    own so one bad address cannot hold back the rest.

    Returns:
        number of emails sent
    """
    settings = get_settings()
    sender = sender or EmailSender(settings)
    batch_size = batch_size or settings.OUTBOX_BATCH_SIZE

    pending = (
        db.query(EmailOutboxModel)
        .filter(EmailOutboxModel.status == "pending")
        .order_by(EmailOutboxModel.created_at, EmailOutboxModel.id)
        .limit(batch_size)
        .all()
    )
    sent = 0
    for row in pending:
        row.attempts += 1
        try:
            subject, html = render_email(row.template, row.context or {})
            row.subject = subject
            sender.send(row.recipient, subject, html)
        except EmailDeliveryError as exc:
            row.last_error = str(exc)
            if row.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
                row.status = "failed"
                logger.error("Giving up on email %s to %s after %s attempts", row.id, row.recipient, row.attempts)
            else:
                logger.warning("Email %s to %s failed (attempt %s): %s", row.id, row.recipient, row.attempts, exc)
        except Exception as exc:
            # Broken template or context, retrying cannot help
            logger.exception("Email %s could not be rendered", row.id)
            row.last_error = str(exc)
            row.status = "failed"
        else:
            row.status = "sent"
            row.sent_at = utcnow()
            row.last_error = None
            sent += 1
        db.commit()
    return sent


# ── In-app notifications ──

def create_notification(
    db: Session,
    user_id: int,
    notification_type: str,
    title: str,
    message: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
) -> NotificationModel:
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")
    row = NotificationModel(
        user_id=user_id,
        notification_type=notification_type,
        title=title[:200],
        message=message[:500],
        entity_type=entity_type,
        entity_id=entity_id,
        is_read=False,
    )
    db.add(row)
    db.flush()
    return row


def notification_to_dict(n: NotificationModel) -> dict:
    return {
        "id": n.id,
        "type": n.notification_type,
        "title": n.title,
        "message": n.message,
        "entity_type": n.entity_type,
        "entity_id": n.entity_id,
        "is_read": n.is_read,
        "read_at": isoformat(n.read_at),
        "created_at": isoformat(n.created_at),
    }


class NotificationReadService:
    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> dict:
        q = self.db.query(NotificationModel).filter(NotificationModel.user_id == user_id)
        if unread_only:
            q = q.filter(NotificationModel.is_read == False)  # noqa: E712
        rows = q.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc()).limit(limit).all()
        unread = self.db.query(NotificationModel).filter(
            NotificationModel.user_id == user_id,
            NotificationModel.is_read == False,  # noqa: E712
        ).count()
        return {"notifications": [notification_to_dict(n) for n in rows], "unread_count": unread}


class MarkNotificationsReadUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user_id: int, notification_ids: list[int] | None = None) -> int:
        """Mark the given notifications (or all when None) of the user as read."""
        if notification_ids is not None and not notification_ids:
            raise ValidationError("notification_ids must not be empty")
        q = self.db.query(NotificationModel).filter(
            NotificationModel.user_id == user_id,
            NotificationModel.is_read == False,  # noqa: E712
        )
        if notification_ids is not None:
            q = q.filter(NotificationModel.id.in_(notification_ids))
        now = utcnow()
        count = 0
        for n in q.all():
            n.is_read = True
            n.read_at = now
            count += 1
        self.db.commit()
        return count
