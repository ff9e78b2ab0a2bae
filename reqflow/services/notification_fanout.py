"""
Requisition Workflow — Notification Fan-out Engine

Given a committed TransitionEvent, works out who must hear about it and
creates one in-app notification (plus one queued email, preference
permitting) per person.

Audience rules are keyed by WorkflowEvent; each rule selects users and tags
them with a notification type. Rules are evaluated in order and the first
rule that selects a user wins, so everybody gets exactly one notification
per event. The acting user is never notified about their own action.

    submitted  every reviewer/approver/admin                  -> requisition_submitted
    reviewed   submitter                                      -> requisition_reviewed
               every approver/admin                           -> requisition_pending_approval
    approved   submitter, reviewer                            -> requisition_approved
    rejected   submitter, reviewer                            -> requisition_rejected
               every approver/admin (only from pending)       -> requisition_rejected

In-app notifications are created regardless of the recipient's email
preference; only the email is skipped for users who opted out.

Delivery is per recipient inside a savepoint. A failure for one recipient
is logged and collected in FanoutResult.failures; the others proceed and
the already-committed transition is never touched. A failure outside the
per-recipient loop rolls back the fan-out as a whole and is reported the
same way.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from reqflow.core.exceptions import NotificationDeliveryFailure, ValidationError
from reqflow.models import db
from reqflow.models.audit import AuditLog
from reqflow.models.auth import OrganizationMember, OrgRole, User
from reqflow.models.notification import NotificationType
from reqflow.models.project import ProjectAssignment, ProjectRole
from reqflow.models.requisition import Requisition, RequisitionComment, RequisitionStatus
from reqflow.services.email_queue import enqueue
from reqflow.services.helpers.scoped_queries import get_scoped
from reqflow.services.notification import NotificationService
from reqflow.services.permission import Capability, organization_capabilities, project_capabilities
from reqflow.services.requisition_workflow import TransitionEvent, WorkflowEvent

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Value objects
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Recipient:
    user_id: int
    notification_type: NotificationType


@dataclass
class FanoutResult:
    notified: list[int] = field(default_factory=list)
    emailed: list[int] = field(default_factory=list)
    failures: list[NotificationDeliveryFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "notified": self.notified,
            "emailed": self.emailed,
            "failures": [
                {"user_id": f.user_id, "notification_type": f.notification_type, "error": str(f.cause)}
                for f in self.failures
            ],
        }


@dataclass(frozen=True)
class AudienceRule:
    """One audience slice: who is selected, what they get, and when the rule applies."""

    select: Callable[[Requisition], list[int]]
    notification_type: NotificationType
    title: str
    message: str          # str.format with {title}, {actor}
    include_reason: bool = False
    only_from: frozenset | None = None   # prior statuses the rule applies to; None = any

    def applies(self, from_status: RequisitionStatus) -> bool:
        return self.only_from is None or from_status in self.only_from

    def render(self, requisition_title: str, actor_name: str, reason: str | None) -> str:
        text = self.message.format(title=requisition_title, actor=actor_name)
        if self.include_reason and reason:
            text += f" Reason: {reason}"
        return text


# ═══════════════════════════════════════════════════════════════════════════
#  Audience selectors
# ═══════════════════════════════════════════════════════════════════════════

def _members_with(requisition: Requisition, wanted: frozenset) -> list[int]:
    """Active members of the requisition's organization holding any ``wanted`` capability.

    Organization-wide roles count, and so does a project role on the
    requisition's own project.
    """
    members = (
        OrganizationMember.query
        .join(User, User.id == OrganizationMember.user_id)
        .filter(
            OrganizationMember.organization_id == requisition.organization_id,
            OrganizationMember.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(OrganizationMember.user_id)
        .all()
    )
    assignments = {
        a.user_id: (ProjectRole(a.role) if a.role else None)
        for a in ProjectAssignment.query_for_organization(requisition.organization_id)
        .filter_by(project_id=requisition.project_id)
    }

    selected = []
    for member in members:
        org_role = OrgRole(member.role)
        workflow_role = member.effective_workflow_role
        caps = organization_capabilities(org_role, workflow_role)
        if member.user_id in assignments:
            caps = caps | project_capabilities(
                org_role, workflow_role,
                {requisition.project_id: assignments[member.user_id]},
                requisition.project_id,
            )
        if caps & wanted:
            selected.append(member.user_id)
    return selected


def _submitter(requisition: Requisition) -> list[int]:
    return [requisition.submitted_by]


def _reviewer(requisition: Requisition) -> list[int]:
    return [requisition.reviewed_by] if requisition.reviewed_by is not None else []


def _reviewers_and_approvers(requisition: Requisition) -> list[int]:
    return _members_with(
        requisition, frozenset({Capability.REVIEW, Capability.APPROVE, Capability.ADMIN}),
    )


def _approvers(requisition: Requisition) -> list[int]:
    return _members_with(requisition, frozenset({Capability.APPROVE, Capability.ADMIN}))


# ═══════════════════════════════════════════════════════════════════════════
#  Rules
# ═══════════════════════════════════════════════════════════════════════════

AUDIENCE_RULES: dict[WorkflowEvent, tuple[AudienceRule, ...]] = {
    WorkflowEvent.SUBMITTED: (
        AudienceRule(
            select=_reviewers_and_approvers,
            notification_type=NotificationType.REQUISITION_SUBMITTED,
            title="New Requisition Submitted",
            message='{actor} submitted requisition "{title}" for review.',
        ),
    ),
    WorkflowEvent.REVIEWED: (
        AudienceRule(
            select=_submitter,
            notification_type=NotificationType.REQUISITION_REVIEWED,
            title="Requisition Reviewed",
            message='Your requisition "{title}" has been reviewed by {actor} and is pending approval.',
        ),
        AudienceRule(
            select=_approvers,
            notification_type=NotificationType.REQUISITION_PENDING_APPROVAL,
            title="Requisition Pending Approval",
            message='Requisition "{title}" has been reviewed by {actor} and needs your approval.',
        ),
    ),
    WorkflowEvent.APPROVED: (
        AudienceRule(
            select=_submitter,
            notification_type=NotificationType.REQUISITION_APPROVED,
            title="Requisition Approved",
            message='Your requisition "{title}" has been approved by {actor}.',
        ),
        AudienceRule(
            select=_reviewer,
            notification_type=NotificationType.REQUISITION_APPROVED,
            title="Requisition Approved",
            message='Requisition "{title}" that you reviewed has been approved by {actor}.',
        ),
    ),
    WorkflowEvent.REJECTED: (
        AudienceRule(
            select=_submitter,
            notification_type=NotificationType.REQUISITION_REJECTED,
            title="Requisition Rejected",
            message='Your requisition "{title}" has been rejected by {actor}.',
            include_reason=True,
        ),
        AudienceRule(
            select=_reviewer,
            notification_type=NotificationType.REQUISITION_REJECTED,
            title="Requisition Rejected",
            message='Requisition "{title}" that you reviewed has been rejected by {actor}.',
            include_reason=True,
        ),
        AudienceRule(
            select=_approvers,
            notification_type=NotificationType.REQUISITION_REJECTED,
            title="Requisition Rejected",
            message='Requisition "{title}" has been rejected by {actor}.',
            include_reason=True,
            only_from=frozenset({RequisitionStatus.PENDING}),
        ),
    ),
}

_missing_events = set(WorkflowEvent) - set(AUDIENCE_RULES)
if _missing_events:
    raise RuntimeError(f"WorkflowEvent members without audience rules: {sorted(_missing_events)}")


# ═══════════════════════════════════════════════════════════════════════════
#  Audience computation
# ═══════════════════════════════════════════════════════════════════════════

def _resolve(requisition: Requisition, event: TransitionEvent) -> list[tuple[AudienceRule, int]]:
    seen = {event.actor_id}
    resolved = []
    for rule in AUDIENCE_RULES[event.event_type]:
        if not rule.applies(event.from_status):
            continue
        for user_id in rule.select(requisition):
            if user_id in seen:
                continue
            seen.add(user_id)
            resolved.append((rule, user_id))
    return resolved


def compute_audience(event: TransitionEvent) -> list[Recipient]:
    """Ordered, deduplicated recipients for ``event`` (actor excluded)."""
    requisition = get_scoped(Requisition, event.requisition_id, organization_id=event.organization_id)
    return [
        Recipient(user_id=user_id, notification_type=rule.notification_type)
        for rule, user_id in _resolve(requisition, event)
    ]


def audience_ids(event: TransitionEvent) -> frozenset[int]:
    return frozenset(r.user_id for r in compute_audience(event))


# ═══════════════════════════════════════════════════════════════════════════
#  Delivery
# ═══════════════════════════════════════════════════════════════════════════

def _display_name(user_id: int | None) -> str:
    user = db.session.get(User, user_id) if user_id is not None else None
    return user.display_name if user else "Someone"


def _deliver(event: TransitionEvent, result: FanoutResult) -> None:
    requisition = get_scoped(Requisition, event.requisition_id, organization_id=event.organization_id)
    actor_name = _display_name(event.actor_id)

    for rule, user_id in _resolve(requisition, event):
        notification_type = rule.notification_type
        try:
            with db.session.begin_nested():
                NotificationService.create(
                    organization_id=event.organization_id,
                    user_id=user_id,
                    notification_type=notification_type,
                    title=rule.title,
                    message=rule.render(requisition.title, actor_name, event.reason),
                    related_requisition_id=requisition.id,
                )
                email = enqueue(
                    user_id, notification_type, requisition.id, event.organization_id,
                    actor_name=actor_name, reason=event.reason,
                )
        except Exception as exc:  # noqa: BLE001
            failure = NotificationDeliveryFailure(user_id, notification_type.value, exc)
            logger.error("%s", failure, extra=_log_extra(event))
            result.failures.append(failure)
            continue

        result.notified.append(user_id)
        if email is not None:
            result.emailed.append(user_id)

    db.session.commit()


def _log_extra(event: TransitionEvent) -> dict:
    return {
        "organization_id": event.organization_id,
        "requisition_id": event.requisition_id,
        "event_type": event.event_type.value,
    }


def fan_out(event: TransitionEvent) -> FanoutResult:
    """
    Create notifications and queue emails for every audience member of ``event``.

    Must run after the transition committed. Never raises: a single
    recipient's failure is isolated in its savepoint, and a failure outside
    the per-recipient loop (audience lookup, final commit) rolls back the
    whole fan-out and is reported as one failure with ``user_id=None``.
    """
    result = FanoutResult()
    try:
        _deliver(event, result)
    except Exception as exc:  # noqa: BLE001
        db.session.rollback()
        failure = NotificationDeliveryFailure(None, event.event_type.value, exc)
        logger.error("%s", failure, exc_info=True, extra=_log_extra(event))
        # Nothing from this run survived the rollback
        result.notified.clear()
        result.emailed.clear()
        result.failures.append(failure)

    logger.info(
        "Fan-out for requisition %s: %d notified, %d emailed, %d failed",
        event.requisition_id, len(result.notified), len(result.emailed), len(result.failures),
        extra=_log_extra(event),
    )
    return result


def redeliver(requisition_id: int, organization_id: int) -> FanoutResult:
    """Re-run fan-out for the latest committed transition of a requisition.

    The event is rebuilt from the audit trail, so delivery is at-least-once:
    recipients who already got it will get it again.
    """
    requisition = get_scoped(Requisition, requisition_id, organization_id=organization_id)
    entry = (
        AuditLog.query_for_organization(organization_id)
        .filter_by(table_name="requisitions", record_id=str(requisition.id), action="status_change")
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .first()
    )
    if entry is None:
        raise ValidationError(
            "Requisition has no status change to redeliver",
            details={"requisition_id": requisition_id},
        )

    old_values = entry.old_values or {}
    new_values = entry.new_values or {}
    event = TransitionEvent(
        requisition_id=requisition.id,
        organization_id=organization_id,
        from_status=RequisitionStatus(old_values["status"]),
        to_status=RequisitionStatus(new_values["status"]),
        actor_id=entry.actor_id,
        timestamp=entry.timestamp,
        reason=new_values.get("rejection_reason"),
    )
    logger.info(
        "Redelivering %s notifications for requisition %s", event.event_type.value, requisition_id,
        extra={"organization_id": organization_id, "requisition_id": requisition_id},
    )
    return fan_out(event)


def notify_new_comment(comment: RequisitionComment) -> FanoutResult:
    """Tell the submitter that someone else commented on their requisition."""
    result = FanoutResult()
    requisition = comment.requisition
    if comment.user_id is None or comment.user_id == requisition.submitted_by:
        return result

    try:
        NotificationService.create(
            organization_id=requisition.organization_id,
            user_id=requisition.submitted_by,
            notification_type=NotificationType.REQUISITION_COMMENTED,
            title="New Comment on Requisition",
            message=f'{_display_name(comment.user_id)} commented on requisition "{requisition.title}"',
            related_requisition_id=requisition.id,
        )
        db.session.commit()
    except Exception as exc:  # noqa: BLE001
        db.session.rollback()
        failure = NotificationDeliveryFailure(
            requisition.submitted_by, NotificationType.REQUISITION_COMMENTED.value, exc,
        )
        logger.error("%s", failure, extra={"requisition_id": requisition.id,
                                            "organization_id": requisition.organization_id})
        result.failures.append(failure)
    else:
        result.notified.append(requisition.submitted_by)
    return result
