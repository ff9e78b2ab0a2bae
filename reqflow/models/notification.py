"""
Requisition Workflow Platform
Notification domain model.

Models:
    - Notification: in-app alert, one record per recipient per event
    - EmailNotification: queued outbound email drained by the delivery worker
"""

from datetime import datetime, timezone
from enum import Enum

from reqflow.models import db
from reqflow.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

class NotificationType(str, Enum):
    """Tag matching the workflow event that produced the notification."""
    REQUISITION_SUBMITTED = "requisition_submitted"
    REQUISITION_REVIEWED = "requisition_reviewed"
    REQUISITION_PENDING_APPROVAL = "requisition_pending_approval"
    REQUISITION_APPROVED = "requisition_approved"
    REQUISITION_REJECTED = "requisition_rejected"
    REQUISITION_COMMENTED = "requisition_commented"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# Delivery-worker status moves; anything else is rejected.
EMAIL_STATUS_TRANSITIONS = {
    EmailStatus.PENDING.value: {EmailStatus.SENT.value, EmailStatus.FAILED.value},
    EmailStatus.FAILED.value: {EmailStatus.PENDING.value},
    EmailStatus.SENT.value: set(),
}


class Notification(TenantModel):
    """
    In-app notification entity.

    Created only by the fan-out engine (or direct single-recipient calls);
    only the read flag is ever mutated, by the recipient.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), nullable=True)
    related_requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=True, index=True,
    )

    # Read tracking
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "related_requisition_id": self.related_requisition_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} -> user {self.user_id}>"


class EmailNotification(TenantModel):
    """
    Queued outbound email.

    Content columns are written once at enqueue time. The external delivery
    worker only moves ``status`` (pending -> sent | failed).
    """

    __tablename__ = "email_notifications"
    __table_args__ = (
        db.Index("ix_email_notifications_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    recipient_email = db.Column(db.String(200), nullable=False)
    subject = db.Column(db.String(500), nullable=False)
    body_html = db.Column(db.Text, nullable=False)
    body_text = db.Column(db.Text, nullable=False)
    notification_type = db.Column(db.String(50), nullable=False)
    related_requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=EmailStatus.PENDING.value)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "recipient_user_id": self.recipient_user_id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "body_html": self.body_html,
            "body_text": self.body_text,
            "notification_type": self.notification_type,
            "related_requisition_id": self.related_requisition_id,
            "status": self.status,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<EmailNotification {self.id}: {self.notification_type} [{self.status}]>"
