"""
Requisition Workflow Platform
Email Delivery Queue.

Producer side:
    enqueue(...) renders the email (services/email_content.py) and persists
    it as a pending EmailNotification scoped to the requisition's
    organization. It flushes only; the caller owns the transaction.

Worker side (the external delivery process):
    list_pending(limit)      oldest pending items first
    mark_sent(email_id)      pending -> sent
    mark_failed(email_id)    pending -> failed (error recorded)
    requeue(email_id)        failed  -> pending

Status moves outside EMAIL_STATUS_TRANSITIONS raise ValidationError.
"""

import logging
from datetime import datetime, timezone

from reqflow.core.exceptions import NotFoundError, ValidationError
from reqflow.models import db
from reqflow.models.auth import OrganizationMember, User
from reqflow.models.notification import (
    EMAIL_STATUS_TRANSITIONS,
    EmailNotification,
    EmailStatus,
)
from reqflow.models.requisition import Requisition
from reqflow.services.email_content import generate_email_content
from reqflow.services.security_observability import record_security_event

logger = logging.getLogger(__name__)


def enqueue(
    recipient_user_id: int,
    notification_type: str,
    requisition_id: int,
    organization_id: int | None = None,
    *,
    actor_name: str | None = None,
    reason: str | None = None,
) -> EmailNotification | None:
    """
    Queue one workflow email for ``recipient_user_id``.

    The organization always comes from the requisition. A caller-supplied
    ``organization_id`` is only checked against it; a mismatch is treated as
    a cross-tenant attempt and reported as a missing requisition.

    Returns:
        The flushed EmailNotification, or None when the recipient opted out
        of email notifications.

    Raises:
        NotFoundError: requisition missing, organization mismatch, or the
            recipient is not an active member of the organization.
        ValidationError: unknown notification type.
    """
    notification_type = getattr(notification_type, "value", notification_type)

    requisition = db.session.get(Requisition, requisition_id)
    if requisition is None:
        raise NotFoundError(resource="Requisition", resource_id=requisition_id)

    if organization_id is not None and organization_id != requisition.organization_id:
        record_security_event(
            event_type="cross_organization_access_attempt",
            reason="email enqueue organization does not match requisition",
            severity="high",
            organization_id=organization_id,
            requisition_id=requisition_id,
            details={"recipient_user_id": recipient_user_id},
        )
        raise NotFoundError(
            resource="Requisition", resource_id=requisition_id, organization_id=organization_id,
        )
    organization_id = requisition.organization_id

    recipient = db.session.get(User, recipient_user_id)
    member = OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=recipient_user_id, is_active=True,
    ).first()
    if recipient is None or member is None or not recipient.is_active:
        raise NotFoundError(
            resource="OrganizationMember", resource_id=recipient_user_id,
            organization_id=organization_id,
        )

    if not recipient.email_notifications_enabled:
        logger.debug(
            "User %s has email notifications disabled; skipping %s",
            recipient_user_id, notification_type,
            extra={"organization_id": organization_id, "requisition_id": requisition_id},
        )
        return None

    content = generate_email_content(
        requisition_id, recipient.display_name, notification_type,
        actor_name=actor_name, reason=reason,
    )

    email = EmailNotification(
        organization_id=organization_id,
        recipient_user_id=recipient_user_id,
        recipient_email=recipient.email,
        subject=content.subject,
        body_html=content.html_body,
        body_text=content.text_body,
        notification_type=notification_type,
        related_requisition_id=requisition_id,
        status=EmailStatus.PENDING.value,
    )
    db.session.add(email)
    db.session.flush()

    logger.info(
        "Queued %s email %s for user %s", notification_type, email.id, recipient_user_id,
        extra={
            "organization_id": organization_id,
            "requisition_id": requisition_id,
            "event_type": notification_type,
        },
    )
    return email


# ── Worker side ──────────────────────────────────────────────────────────────


def list_pending(limit: int = 50) -> list[EmailNotification]:
    """Pending work items, oldest first, across organizations (worker view)."""
    return (
        EmailNotification.query
        .filter_by(status=EmailStatus.PENDING.value)
        .order_by(EmailNotification.created_at.asc(), EmailNotification.id.asc())
        .limit(limit)
        .all()
    )


def _move(email_id: int, target: EmailStatus) -> EmailNotification:
    email = db.session.get(EmailNotification, email_id)
    if email is None:
        raise NotFoundError(resource="EmailNotification", resource_id=email_id)

    allowed = EMAIL_STATUS_TRANSITIONS.get(email.status, set())
    if target.value not in allowed:
        raise ValidationError(
            f"Cannot move email from '{email.status}' to '{target.value}'",
            details={"email_id": email_id, "current_status": email.status,
                     "allowed": sorted(allowed)},
        )
    email.status = target.value
    return email


def mark_sent(email_id: int) -> EmailNotification:
    email = _move(email_id, EmailStatus.SENT)
    email.attempts = (email.attempts or 0) + 1
    email.sent_at = datetime.now(timezone.utc)
    email.error_message = None
    db.session.commit()
    return email


def mark_failed(email_id: int, error: str) -> EmailNotification:
    email = _move(email_id, EmailStatus.FAILED)
    email.attempts = (email.attempts or 0) + 1
    email.error_message = error
    db.session.commit()
    logger.warning(
        "Email %s delivery failed (attempt %s): %s", email_id, email.attempts, error,
        extra={"organization_id": email.organization_id,
               "requisition_id": email.related_requisition_id},
    )
    return email


def requeue(email_id: int) -> EmailNotification:
    email = _move(email_id, EmailStatus.PENDING)
    db.session.commit()
    return email
