"""
Requisition Workflow Platform
Notification Service.

Creating and querying in-app notifications. Creation is driven by the
fan-out engine (services/notification_fanout.py); the read flag is the only
thing a recipient can change.
"""

from datetime import datetime, timezone

from reqflow.core.exceptions import NotFoundError
from reqflow.models import db
from reqflow.models.notification import Notification


def requisition_link(requisition_id: int) -> str:
    return f"/requisitions/{requisition_id}"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, organization_id, user_id, notification_type, title, message="",
               related_requisition_id=None, link=None):
        """
        Create a single notification record.

        Flushes only: the fan-out engine wraps each recipient in a savepoint
        and commits once at the end.

        Returns:
            The flushed Notification instance.
        """
        if link is None and related_requisition_id is not None:
            link = requisition_link(related_requisition_id)
        notif = Notification(
            organization_id=organization_id,
            user_id=user_id,
            type=getattr(notification_type, "value", notification_type),
            title=title,
            message=message,
            link=link,
            related_requisition_id=related_requisition_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, organization_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query_for_organization(organization_id).filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id, organization_id):
        """Return count of unread notifications."""
        return (
            Notification.query_for_organization(organization_id)
            .filter_by(user_id=user_id, is_read=False)
            .count()
        )

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id, organization_id):
        """Mark a single notification as read. Only its recipient may do so.

        Someone else's notification is reported as missing.
        """
        notif = (
            Notification.query_for_organization(organization_id)
            .filter_by(id=notification_id, user_id=user_id)
            .first()
        )
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id, organization_id):
        """Mark all notifications for a recipient as read."""
        q = Notification.query_for_organization(organization_id).filter_by(
            user_id=user_id, is_read=False,
        )
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count
