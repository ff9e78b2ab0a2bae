"""
Tests for the requisition state machine (services/requisition_workflow.py).

Covers:
    - Happy path draft -> pending -> reviewed -> approved with stamps
    - Edge validation (terminal states, skipped steps, unknown targets)
    - Rejection reason required from every non-terminal state
    - Capability checks + security events for refused actors
    - Tenant isolation (cross-org lookup is NotFound)
    - Compare-and-swap conflict and rollback
    - Audit rows written with the transition
"""

from unittest.mock import patch

import pytest
from sqlalchemy import update

from reqflow.core.exceptions import (
    ConcurrentModification,
    InvalidTransition,
    MissingReason,
    NotFoundError,
    Unauthorized,
)
from reqflow.models import db
from reqflow.models.audit import AuditLog
from reqflow.models.requisition import Requisition, RequisitionStatus
from reqflow.services import requisition_workflow
from reqflow.services.requisition_service import create_requisition, list_requisition_audit
from reqflow.services.requisition_workflow import (
    WorkflowEvent,
    allowed_targets,
    allowed_transitions,
    apply_transition,
)
from reqflow.services.security_observability import get_recent_security_events
from reqflow.services.tenant_context import resolve_tenant_context
from tests.factories import make_requisition


def _status(requisition_id):
    db.session.expire_all()
    return db.session.get(Requisition, requisition_id).status


def _status_changes(requisition_id):
    return AuditLog.query.filter_by(
        table_name="requisitions", record_id=str(requisition_id), action="status_change",
    ).count()


# ═════════════════════════════════════════════════════════════════════════════
# Happy path
# ═════════════════════════════════════════════════════════════════════════════


class TestHappyPath:
    def test_submit_review_approve(self, org):
        req = make_requisition(org)
        oid = org.org.id

        ev = apply_transition(req.id, "pending", org.submitter.id, organization_id=oid)
        assert ev.event_type == WorkflowEvent.SUBMITTED
        assert ev.from_status == RequisitionStatus.DRAFT
        assert _status(req.id) == "pending"

        ev = apply_transition(req.id, "reviewed", org.reviewer.id, organization_id=oid)
        assert ev.event_type == WorkflowEvent.REVIEWED

        ev = apply_transition(req.id, "approved", org.approver.id, organization_id=oid)
        assert ev.event_type == WorkflowEvent.APPROVED
        assert ev.actor_id == org.approver.id

        final = db.session.get(Requisition, req.id)
        assert final.status == "approved"
        assert final.submitted_at is not None
        assert final.reviewed_by == org.reviewer.id
        assert final.reviewed_at is not None
        assert final.approved_by == org.approver.id
        assert final.approved_at is not None
        assert _status_changes(req.id) == 3

    def test_reject_stores_stripped_reason(self, org):
        req = make_requisition(org, status="pending")
        ev = apply_transition(
            req.id, "rejected", org.reviewer.id, "  Over budget  ", organization_id=org.org.id,
        )
        assert ev.reason == "Over budget"
        final = db.session.get(Requisition, req.id)
        assert final.rejection_reason == "Over budget"
        assert final.rejected_by == org.reviewer.id

    def test_owner_can_approve_without_assignment(self, org):
        req = make_requisition(org, status="reviewed")
        apply_transition(req.id, "approved", org.owner.id, organization_id=org.org.id)
        assert _status(req.id) == "approved"

    def test_event_to_dict(self, org):
        req = make_requisition(org)
        ev = apply_transition(req.id, "pending", org.submitter.id, organization_id=org.org.id)
        d = ev.to_dict()
        assert d["event_type"] == "submitted"
        assert d["from_status"] == "draft"
        assert d["to_status"] == "pending"
        assert d["reason"] is None


# ═════════════════════════════════════════════════════════════════════════════
# Edge validation
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionValidation:
    @pytest.mark.parametrize("status,target", [
        ("draft", "approved"),
        ("draft", "reviewed"),
        ("pending", "approved"),
        ("approved", "pending"),
        ("approved", "rejected"),
        ("rejected", "pending"),
        ("rejected", "draft"),
        ("pending", "draft"),
    ])
    def test_edges_outside_table_are_refused(self, org, status, target):
        req = make_requisition(org, status=status)
        with pytest.raises(InvalidTransition) as exc:
            apply_transition(req.id, target, org.owner.id, "reason", organization_id=org.org.id)
        assert exc.value.current_status == status
        assert exc.value.allowed == allowed_targets(status)
        assert _status(req.id) == status
        assert _status_changes(req.id) == 0

    def test_unknown_target(self, org):
        req = make_requisition(org)
        with pytest.raises(InvalidTransition):
            apply_transition(req.id, "archived", org.submitter.id, organization_id=org.org.id)

    def test_terminal_states_have_no_targets(self):
        assert allowed_targets("approved") == []
        assert allowed_targets("rejected") == []

    def test_edge_checked_before_reason(self, org):
        req = make_requisition(org, status="approved")
        with pytest.raises(InvalidTransition):
            apply_transition(req.id, "rejected", org.owner.id, organization_id=org.org.id)

    def test_same_transition_twice(self, org):
        req = make_requisition(org, status="pending")
        apply_transition(req.id, "reviewed", org.reviewer.id, organization_id=org.org.id)
        with pytest.raises(InvalidTransition):
            apply_transition(req.id, "reviewed", org.approver.id, organization_id=org.org.id)
        assert _status_changes(req.id) == 1


class TestRejectionReason:
    @pytest.mark.parametrize("status", ["draft", "pending", "reviewed"])
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, org, status, reason):
        req = make_requisition(org, status=status)
        with pytest.raises(MissingReason):
            apply_transition(req.id, "rejected", org.reviewer.id, reason, organization_id=org.org.id)
        assert _status(req.id) == status

    def test_reason_checked_before_authorization(self, org):
        req = make_requisition(org, status="pending")
        with pytest.raises(MissingReason):
            apply_transition(req.id, "rejected", org.outsider.id, organization_id=org.org.id)


# ═════════════════════════════════════════════════════════════════════════════
# Authorization
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthorization:
    def test_only_author_submits(self, org):
        req = make_requisition(org)
        with pytest.raises(Unauthorized) as exc:
            apply_transition(req.id, "pending", org.outsider.id, organization_id=org.org.id)
        assert exc.value.actor_id == org.outsider.id
        assert _status(req.id) == "draft"

    def test_reviewer_cannot_approve(self, org):
        req = make_requisition(org, status="reviewed")
        with pytest.raises(Unauthorized):
            apply_transition(req.id, "approved", org.reviewer.id, organization_id=org.org.id)
        assert _status(req.id) == "reviewed"
        assert _status_changes(req.id) == 0

    def test_unassigned_member_cannot_review(self, org):
        req = make_requisition(org, status="pending")
        with pytest.raises(Unauthorized):
            apply_transition(req.id, "reviewed", org.outsider.id, organization_id=org.org.id)

    def test_refusal_records_security_event(self, org):
        req = make_requisition(org, status="reviewed")
        with pytest.raises(Unauthorized):
            apply_transition(req.id, "approved", org.submitter.id, organization_id=org.org.id)
        events = get_recent_security_events(event_type="unauthorized_transition")
        assert len(events) == 1
        assert events[0]["user_id"] == org.submitter.id
        assert events[0]["requisition_id"] == req.id

    def test_non_member_is_unauthorized(self, org, other_org):
        req = make_requisition(org, status="pending")
        with pytest.raises(Unauthorized):
            apply_transition(req.id, "reviewed", other_org.reviewer.id, organization_id=org.org.id)

    def test_allowed_transitions_for_actor(self, org):
        req = make_requisition(org, status="pending")
        reviewer = resolve_tenant_context(org.reviewer.id, org.org.id)
        submitter = resolve_tenant_context(org.submitter.id, org.org.id)
        assert allowed_transitions(req, reviewer) == ["rejected", "reviewed"]
        assert allowed_transitions(req, submitter) == []


# ═════════════════════════════════════════════════════════════════════════════
# Tenant isolation
# ═════════════════════════════════════════════════════════════════════════════


class TestTenantIsolation:
    def test_cross_org_requisition_not_found(self, org, other_org):
        req = make_requisition(org, status="pending")
        with pytest.raises(NotFoundError):
            apply_transition(
                req.id, "reviewed", other_org.owner.id, organization_id=other_org.org.id,
            )
        assert _status(req.id) == "pending"

    def test_missing_requisition(self, org):
        with pytest.raises(NotFoundError):
            apply_transition(9999, "pending", org.submitter.id, organization_id=org.org.id)


# ═════════════════════════════════════════════════════════════════════════════
# Concurrency
# ═════════════════════════════════════════════════════════════════════════════


class TestCompareAndSwap:
    def test_status_changed_underneath(self, org):
        req = make_requisition(org, status="pending")
        original = requisition_workflow._load_for_update

        def _stale_load(requisition_id, organization_id):
            stale = original(requisition_id, organization_id)
            db.session.execute(
                update(Requisition)
                .where(Requisition.id == requisition_id)
                .values(status="rejected")
                .execution_options(synchronize_session=False)
            )
            return stale

        with patch.object(requisition_workflow, "_load_for_update", side_effect=_stale_load):
            with pytest.raises(ConcurrentModification) as exc:
                apply_transition(req.id, "reviewed", org.reviewer.id, organization_id=org.org.id)

        assert exc.value.expected_status == "pending"
        assert exc.value.current_status == "rejected"
        assert exc.value.target_status == "reviewed"
        # Whole transaction rolled back, including the interfering write
        assert _status(req.id) == "pending"
        assert _status_changes(req.id) == 0


# ═════════════════════════════════════════════════════════════════════════════
# Audit trail
# ═════════════════════════════════════════════════════════════════════════════


class TestAuditTrail:
    def test_create_and_transition_are_audited(self, org):
        req = create_requisition(org.org.id, org.submitter.id, {
            "title": "Laptops", "project_id": org.project.id, "amount": "4200000",
        })
        apply_transition(req.id, "pending", org.submitter.id, organization_id=org.org.id)

        entries = list_requisition_audit(req.id, org.org.id)
        assert [e.action for e in entries] == ["create", "status_change"]
        change = entries[1]
        assert change.actor_id == org.submitter.id
        assert change.old_values["status"] == "draft"
        assert change.new_values["status"] == "pending"

    def test_refused_transition_writes_no_audit(self, org):
        req = make_requisition(org, status="reviewed")
        with pytest.raises(Unauthorized):
            apply_transition(req.id, "approved", org.outsider.id, organization_id=org.org.id)
        assert AuditLog.query.count() == 0
