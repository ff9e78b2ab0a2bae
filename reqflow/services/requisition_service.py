"""
Requisition Workflow Platform
Requisition Service.

Business logic for creating requisitions, commenting on them and driving
them through the workflow. Extracted so that blueprints stay thin:
they parse the request, call one function here and serialize the result.

Transaction discipline:
    create_requisition / add_comment commit once, including their audit row.
    transition_requisition commits the status change (apply_transition),
    then runs notification fan-out, which commits separately.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func

from reqflow.core.exceptions import ValidationError
from reqflow.models import db
from reqflow.models.audit import list_for_record, write_audit
from reqflow.models.auth import Organization
from reqflow.models.project import Project
from reqflow.models.requisition import Requisition, RequisitionComment, RequisitionStatus
from reqflow.services.code_generator import generate_requisition_number
from reqflow.services.helpers.scoped_queries import get_scoped
from reqflow.services.notification_fanout import FanoutResult, fan_out, notify_new_comment
from reqflow.services.requisition_workflow import TransitionEvent, apply_transition
from reqflow.services.tenant_context import resolve_tenant_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    requisition: Requisition
    event: TransitionEvent
    fanout: FanoutResult

    def to_dict(self) -> dict:
        return {
            "requisition": self.requisition.to_dict(),
            "event": self.event.to_dict(),
            "fanout": self.fanout.to_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Validation helpers
# ═════════════════════════════════════════════════════════════════════════════


def _text(value, field_name: str) -> str:
    """Stripped string value of an optional text field ('' when missing)."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string",
                              details={field_name: type(value).__name__})
    return value.strip()


def _parse_id(raw, field_name: str) -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"{field_name} must be an integer", details={field_name: raw})
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer", details={field_name: raw}) from None


def _parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw if raw is not None else 0))
    except (InvalidOperation, ValueError):
        raise ValidationError("amount must be a number", details={"amount": raw}) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError("amount must be zero or positive", details={"amount": str(raw)})
    return amount


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _enforce_monthly_limit(organization: Organization, now: datetime) -> None:
    limit = organization.max_requisitions_per_month
    if limit is None:
        return
    used = (
        db.session.query(func.count(Requisition.id))
        .filter(
            Requisition.organization_id == organization.id,
            Requisition.created_at >= _month_start(now),
        )
        .scalar()
    ) or 0
    if used >= limit:
        raise ValidationError(
            "Monthly requisition limit reached for this organization's plan",
            details={"limit": limit, "used": used, "plan": organization.plan},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Requisitions
# ═════════════════════════════════════════════════════════════════════════════


def get_requisition(requisition_id: int, organization_id: int) -> Requisition:
    return get_scoped(Requisition, requisition_id, organization_id=organization_id)


def create_requisition(organization_id: int, actor_id: int, data: dict) -> Requisition:
    """Create a draft requisition owned by ``actor_id``.

    Required: ``project_id``, ``title``. Optional: ``description``, ``amount``.

    Raises:
        ValidationError: missing fields, bad amount, plan limit, suspended org.
        NotFoundError: project outside the organization, or actor not a member.
    """
    resolve_tenant_context(actor_id, organization_id)

    title = _text(data.get("title"), "title")
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if data.get("project_id") is None:
        raise ValidationError("project_id is required", details={"project_id": "required"})

    project_id = _parse_id(data["project_id"], "project_id")
    project = get_scoped(Project, project_id, organization_id=organization_id)
    if not project.is_active:
        raise ValidationError("Project is not active", details={"project_id": project.id})

    amount = _parse_amount(data.get("amount"))
    organization = db.session.get(Organization, organization_id)
    now = datetime.now(timezone.utc)
    _enforce_monthly_limit(organization, now)

    try:
        requisition = Requisition(
            organization_id=organization_id,
            project_id=project.id,
            requisition_number=generate_requisition_number(organization_id, commit=False),
            title=title,
            description=_text(data.get("description"), "description"),
            amount=amount,
            status=RequisitionStatus.DRAFT.value,
            submitted_by=actor_id,
        )
        db.session.add(requisition)
        db.session.flush()

        write_audit(
            table_name="requisitions",
            record_id=requisition.id,
            action="create",
            actor_id=actor_id,
            organization_id=organization_id,
            new_values={
                "requisition_number": requisition.requisition_number,
                "title": requisition.title,
                "amount": str(requisition.amount),
                **requisition.snapshot(),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Requisition %s created by user %s", requisition.requisition_number, actor_id,
        extra={"organization_id": organization_id, "requisition_id": requisition.id},
    )
    return requisition


def transition_requisition(
    requisition_id: int,
    organization_id: int,
    actor_id: int,
    target_status: str,
    reason: str | None = None,
) -> TransitionOutcome:
    """Apply one status change and notify everyone concerned.

    Workflow errors propagate unchanged; notification failures never do
    (they are reported in the outcome's ``fanout.failures``).
    """
    event = apply_transition(
        requisition_id, target_status, actor_id, reason, organization_id=organization_id,
    )
    result = fan_out(event)
    requisition = get_requisition(requisition_id, organization_id)
    return TransitionOutcome(requisition=requisition, event=event, fanout=result)


# ═════════════════════════════════════════════════════════════════════════════
# Comments & audit
# ═════════════════════════════════════════════════════════════════════════════


def add_comment(requisition_id: int, organization_id: int, actor_id: int, body: str) -> RequisitionComment:
    """Add a comment, audit it, then notify the submitter (if someone else commented)."""
    resolve_tenant_context(actor_id, organization_id)
    requisition = get_requisition(requisition_id, organization_id)

    body = _text(body, "body")
    if not body:
        raise ValidationError("Comment body is required", details={"body": "required"})

    try:
        comment = RequisitionComment(
            organization_id=organization_id,
            requisition_id=requisition.id,
            user_id=actor_id,
            body=body,
        )
        db.session.add(comment)
        db.session.flush()
        write_audit(
            table_name="requisition_comments",
            record_id=comment.id,
            action="comment",
            actor_id=actor_id,
            organization_id=organization_id,
            new_values={"requisition_id": requisition.id, "body": body},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    notify_new_comment(comment)
    return comment


def list_requisition_audit(requisition_id: int, organization_id: int) -> list:
    requisition = get_requisition(requisition_id, organization_id)
    return list_for_record("requisitions", requisition.id, organization_id)
