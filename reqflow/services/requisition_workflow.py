"""
Requisition Workflow — State Machine Service

Manages requisition status transitions with:
  - Transition validation (REQUISITION_TRANSITIONS)
  - Reason check for rejections
  - Capability checks (services/permission.py)
  - Compare-and-swap status update under a row lock
  - Audit trail in the same transaction as the status change

Usage:
    from reqflow.services.requisition_workflow import apply_transition

    event = apply_transition(
        requisition_id=42,
        target_status="reviewed",
        actor_id=7,
        organization_id=3,
    )

The returned TransitionEvent is what downstream side effects (notification
fan-out, email) consume; this module does not know about them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select, update

from reqflow.core.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    MissingReason,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from reqflow.models import db
from reqflow.models.audit import write_audit
from reqflow.models.requisition import (
    REQUISITION_TRANSITIONS,
    Requisition,
    RequisitionStatus,
)
from reqflow.services.helpers.scoped_queries import get_scoped
from reqflow.services.permission import can_transition
from reqflow.services.security_observability import record_security_event
from reqflow.services.tenant_context import resolve_tenant_context

logger = logging.getLogger(__name__)


class WorkflowEvent(str, Enum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


# Target status -> event it produces. Draft is never a target.
_EVENT_FOR_TARGET = {
    RequisitionStatus.PENDING: WorkflowEvent.SUBMITTED,
    RequisitionStatus.REVIEWED: WorkflowEvent.REVIEWED,
    RequisitionStatus.APPROVED: WorkflowEvent.APPROVED,
    RequisitionStatus.REJECTED: WorkflowEvent.REJECTED,
}


@dataclass(frozen=True)
class TransitionEvent:
    """Immutable record of one committed status change."""

    requisition_id: int
    organization_id: int
    from_status: RequisitionStatus
    to_status: RequisitionStatus
    actor_id: int
    timestamp: datetime
    reason: str | None = None

    @property
    def event_type(self) -> WorkflowEvent:
        return _EVENT_FOR_TARGET[self.to_status]

    def to_dict(self) -> dict:
        return {
            "requisition_id": self.requisition_id,
            "organization_id": self.organization_id,
            "event_type": self.event_type.value,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


def allowed_targets(status) -> list[str]:
    """Statuses reachable from ``status`` per the transition table (sorted)."""
    return sorted(s.value for s in REQUISITION_TRANSITIONS[RequisitionStatus(status)])


def allowed_transitions(requisition: Requisition, context) -> list[str]:
    """Targets the actor in ``context`` could legally request right now."""
    return [
        target for target in allowed_targets(requisition.status)
        if can_transition(context, requisition, target)
    ]


def _load_for_update(requisition_id: int, organization_id: int) -> Requisition:
    return get_scoped(Requisition, requisition_id, organization_id=organization_id, for_update=True)


def _stamp_values(target: RequisitionStatus, actor_id: int, reason: str | None, now: datetime) -> dict:
    """Columns written alongside the status for ``target``."""
    values = {"status": target.value, "updated_at": now}
    if target == RequisitionStatus.PENDING:
        values["submitted_at"] = now
    elif target == RequisitionStatus.REVIEWED:
        values.update(reviewed_by=actor_id, reviewed_at=now)
    elif target == RequisitionStatus.APPROVED:
        values.update(approved_by=actor_id, approved_at=now)
    elif target == RequisitionStatus.REJECTED:
        values.update(rejected_by=actor_id, rejected_at=now, rejection_reason=reason)
    return values


def _check_authorized(requisition: Requisition, target: RequisitionStatus, actor_id: int,
                      organization_id: int, allowed: list[str]) -> None:
    try:
        context = resolve_tenant_context(actor_id, organization_id)
    except NotFoundError:
        context = None

    if context is not None and can_transition(context, requisition, target):
        return

    record_security_event(
        event_type="unauthorized_transition",
        reason=f"{requisition.status} -> {target.value} denied",
        organization_id=organization_id,
        user_id=actor_id,
        requisition_id=requisition.id,
    )
    raise Unauthorized(
        actor_id, requisition.status, target.value,
        requisition_id=requisition.id, allowed=allowed,
    )


def apply_transition(
    requisition_id: int,
    target_status: str,
    actor_id: int,
    reason: str | None = None,
    *,
    organization_id: int,
) -> TransitionEvent:
    """
    Execute one requisition status transition.

    Args:
        requisition_id: Requisition to move.
        target_status: Desired status value.
        actor_id: Who is performing the action.
        organization_id: Scope the requisition must belong to.
        reason: Required (non-blank) when rejecting.

    Returns:
        TransitionEvent for the committed change.

    Raises:
        NotFoundError, InvalidTransition, MissingReason, Unauthorized,
        ConcurrentModification, ValidationError (non-string reason)
    """
    try:
        requisition = _load_for_update(requisition_id, organization_id)
        current = RequisitionStatus(requisition.status)
        allowed = allowed_targets(current)

        # 1. Edge
        try:
            target = RequisitionStatus(target_status)
        except ValueError:
            raise InvalidTransition(
                current.value, str(target_status), requisition_id=requisition_id, allowed=allowed,
            ) from None
        if target not in REQUISITION_TRANSITIONS[current]:
            raise InvalidTransition(
                current.value, target.value, requisition_id=requisition_id, allowed=allowed,
            )

        # 2. Reason
        if reason is not None and not isinstance(reason, str):
            raise ValidationError(
                "reason must be a string", details={"reason": type(reason).__name__},
            )
        reason = reason.strip() if reason else None
        if target == RequisitionStatus.REJECTED and not reason:
            raise MissingReason(current.value, requisition_id=requisition_id, allowed=allowed)

        # 3. Authorization
        _check_authorized(requisition, target, actor_id, organization_id, allowed)

        # 4. Compare-and-swap
        now = datetime.now(timezone.utc)
        old_snapshot = requisition.snapshot()
        result = db.session.execute(
            update(Requisition)
            .where(
                Requisition.id == requisition_id,
                Requisition.organization_id == organization_id,
                Requisition.status == current.value,
            )
            .values(**_stamp_values(target, actor_id, reason, now))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            observed = db.session.execute(
                select(Requisition.status).where(Requisition.id == requisition_id)
            ).scalar_one_or_none()
            raise ConcurrentModification(
                current.value, observed, target.value, requisition_id=requisition_id,
            )

        db.session.refresh(requisition)

        # 5. Audit, same transaction
        write_audit(
            table_name="requisitions",
            record_id=requisition_id,
            action="status_change",
            actor_id=actor_id,
            organization_id=organization_id,
            old_values=old_snapshot,
            new_values=requisition.snapshot(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Requisition %s moved %s -> %s by user %s",
        requisition_id, current.value, target.value, actor_id,
        extra={
            "organization_id": organization_id,
            "requisition_id": requisition_id,
            "event_type": _EVENT_FOR_TARGET[target].value,
        },
    )
    return TransitionEvent(
        requisition_id=requisition_id,
        organization_id=organization_id,
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        timestamp=now,
        reason=reason,
    )
