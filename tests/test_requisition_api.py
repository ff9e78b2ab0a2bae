"""
End-to-end tests for the requisition API (blueprints/requisition_bp.py).

Covers:
    - Authentication / tenant gate (401, 403 for non-members and suspended orgs)
    - Create draft, detail with allowed transitions
    - Full workflow over HTTP with notification counts
    - Error mapping: missing reason 422, unauthorized 403, invalid edge 409,
      cross-tenant 404, missing target 400
    - Wrongly typed fields and non-object bodies answer 422
    - Audit trail and comments endpoints
    - Plan limit on monthly requisitions
"""

from reqflow.models import db
from reqflow.models.notification import EmailNotification, Notification
from tests.factories import make_requisition

BASE = "/api/v1/requisitions"


def _create(client, headers, org, **overrides):
    payload = {"title": "Office chairs", "project_id": org.project.id, "amount": 1250000}
    payload.update(overrides)
    return client.post(BASE, json=payload, headers=headers)


def _move(client, headers, requisition_id, target, reason=None):
    body = {"target_status": target}
    if reason is not None:
        body["reason"] = reason
    return client.post(f"{BASE}/{requisition_id}/transition", json=body, headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# Authentication & tenant gate
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthGate:
    def test_no_token(self, client, org):
        res = client.get(f"{BASE}/1")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_garbage_token(self, client, org):
        res = client.get(f"{BASE}/1", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_non_member_token(self, client, org, other_org, auth_headers):
        req = make_requisition(org)
        res = client.get(f"{BASE}/{req.id}", headers=auth_headers(other_org.owner, org.org))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_suspended_organization(self, client, org, auth_headers):
        headers = auth_headers(org.submitter, org.org)
        org.org.status = "suspended"
        db.session.commit()
        res = _create(client, headers, org)
        assert res.status_code == 403

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        live = client.get("/api/v1/health/live")
        assert live.status_code == 200
        assert live.get_json()["checks"]["database"]["status"] == "ok"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert res.headers.get("X-Request-ID") == "abc123"


# ═════════════════════════════════════════════════════════════════════════════
# Create & read
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateAndRead:
    def test_create_draft(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.submitter, org.org), org)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "draft"
        assert data["requisition_number"] == "REQ-00001"
        assert data["submitted_by"] == org.submitter.id
        assert data["amount"] == "1250000.00"

    def test_title_required(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.submitter, org.org), org, title="  ")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_negative_amount(self, client, org, auth_headers):
        res = _create(client, auth_headers(org.submitter, org.org), org, amount=-5)
        assert res.status_code == 422

    def test_project_from_other_org(self, client, org, other_org, auth_headers):
        res = _create(client, auth_headers(org.submitter, org.org), org, project_id=other_org.project.id)
        assert res.status_code == 404

    def test_monthly_plan_limit(self, client, org, auth_headers):
        org.org.max_requisitions_per_month = 1
        db.session.commit()
        headers = auth_headers(org.submitter, org.org)
        assert _create(client, headers, org).status_code == 201
        res = _create(client, headers, org)
        assert res.status_code == 422
        assert res.get_json()["details"]["limit"] == 1

    def test_non_json_body(self, client, org, auth_headers):
        res = client.post(
            BASE, data="title=x", content_type="text/plain",
            headers=auth_headers(org.submitter, org.org),
        )
        assert res.status_code == 415

    def test_detail_lists_allowed_transitions(self, client, org, auth_headers):
        req = make_requisition(org, status="pending")
        reviewer = client.get(f"{BASE}/{req.id}", headers=auth_headers(org.reviewer, org.org))
        assert reviewer.status_code == 200
        assert reviewer.get_json()["allowed_transitions"] == ["rejected", "reviewed"]

        submitter = client.get(f"{BASE}/{req.id}", headers=auth_headers(org.submitter, org.org))
        assert submitter.get_json()["allowed_transitions"] == []

    def test_cross_tenant_read_is_404(self, client, org, other_org, auth_headers):
        req = make_requisition(org)
        res = client.get(f"{BASE}/{req.id}", headers=auth_headers(other_org.owner, other_org.org))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Workflow over HTTP
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowApi:
    def test_full_approval(self, client, org, auth_headers):
        submitter = auth_headers(org.submitter, org.org)
        req_id = _create(client, submitter, org).get_json()["id"]

        res = _move(client, submitter, req_id, "pending")
        assert res.status_code == 200
        body = res.get_json()
        assert body["requisition"]["status"] == "pending"
        assert body["event"]["event_type"] == "submitted"
        assert len(body["fanout"]["notified"]) == 3
        assert body["fanout"]["failures"] == []

        res = _move(client, auth_headers(org.reviewer, org.org), req_id, "reviewed")
        assert res.get_json()["requisition"]["reviewed_by"] == org.reviewer.id

        res = _move(client, auth_headers(org.approver, org.org), req_id, "approved")
        assert res.status_code == 200
        assert res.get_json()["requisition"]["status"] == "approved"

        assert Notification.query.filter_by(user_id=org.submitter.id).count() == 2
        assert EmailNotification.query.filter_by(related_requisition_id=req_id).count() == 8

    def test_reject_without_reason(self, client, org, auth_headers):
        req = make_requisition(org, status="pending")
        res = _move(client, auth_headers(org.reviewer, org.org), req.id, "rejected", "")
        assert res.status_code == 422
        data = res.get_json()
        assert data["code"] == "WORKFLOW_MISSING_REASON"
        assert data["details"]["current_status"] == "pending"

    def test_reviewer_cannot_approve(self, client, org, auth_headers):
        req = make_requisition(org, status="reviewed")
        res = _move(client, auth_headers(org.reviewer, org.org), req.id, "approved")
        assert res.status_code == 403
        assert res.get_json()["code"] == "WORKFLOW_UNAUTHORIZED"
        assert Notification.query.count() == 0

    def test_invalid_edge(self, client, org, auth_headers):
        req = make_requisition(org, status="approved")
        res = _move(client, auth_headers(org.owner, org.org), req.id, "pending")
        assert res.status_code == 409
        data = res.get_json()
        assert data["code"] == "WORKFLOW_INVALID_TRANSITION"
        assert data["details"]["allowed_transitions"] == []

    def test_cross_tenant_transition_is_404(self, client, org, other_org, auth_headers):
        req = make_requisition(org, status="pending")
        res = _move(client, auth_headers(other_org.owner, other_org.org), req.id, "rejected", "x")
        assert res.status_code == 404
        db.session.expire_all()
        assert req.status == "pending"

    def test_missing_target(self, client, org, auth_headers):
        req = make_requisition(org)
        res = client.post(
            f"{BASE}/{req.id}/transition", json={}, headers=auth_headers(org.submitter, org.org),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


# ═════════════════════════════════════════════════════════════════════════════
# Audit & comments
# ═════════════════════════════════════════════════════════════════════════════


class TestAuditAndComments:
    def test_audit_trail(self, client, org, auth_headers):
        submitter = auth_headers(org.submitter, org.org)
        req_id = _create(client, submitter, org).get_json()["id"]
        _move(client, submitter, req_id, "pending")
        _move(client, auth_headers(org.reviewer, org.org), req_id, "rejected", "Duplicate")

        res = client.get(f"{BASE}/{req_id}/audit", headers=submitter)
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 3
        last = data["items"][-1]
        assert last["action"] == "status_change"
        assert last["actor_id"] == org.reviewer.id
        assert last["new_values"]["rejection_reason"] == "Duplicate"

    def test_comment(self, client, org, auth_headers):
        req = make_requisition(org, status="pending")
        res = client.post(
            f"{BASE}/{req.id}/comments", json={"body": "Which supplier?"},
            headers=auth_headers(org.reviewer, org.org),
        )
        assert res.status_code == 201
        assert res.get_json()["body"] == "Which supplier?"
        assert Notification.query.filter_by(
            user_id=org.submitter.id, type="requisition_commented",
        ).count() == 1

    def test_empty_comment(self, client, org, auth_headers):
        req = make_requisition(org)
        res = client.post(
            f"{BASE}/{req.id}/comments", json={"body": ""},
            headers=auth_headers(org.reviewer, org.org),
        )
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# Malformed payloads
# ═════════════════════════════════════════════════════════════════════════════


class TestMalformedPayloads:
    def test_non_string_reason(self, client, org, auth_headers):
        req = make_requisition(org, status="pending")
        res = _move(client, auth_headers(org.reviewer, org.org), req.id, "rejected", reason=123)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"
        db.session.expire_all()
        assert req.status == "pending"

    def test_non_string_target_status(self, client, org, auth_headers):
        req = make_requisition(org)
        headers = auth_headers(org.submitter, org.org)
        for bad in (7, ["pending"], {"status": "pending"}):
            res = client.post(f"{BASE}/{req.id}/transition", json={"target_status": bad}, headers=headers)
            assert res.status_code == 422, bad
            assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_non_numeric_project_id(self, client, org, auth_headers):
        headers = auth_headers(org.submitter, org.org)
        for bad in ("abc", ["1"], True):
            res = _create(client, headers, org, project_id=bad)
            assert res.status_code == 422, bad
            assert res.get_json()["details"] == {"project_id": bad}

    def test_non_string_title_and_body(self, client, org, auth_headers):
        headers = auth_headers(org.submitter, org.org)
        assert _create(client, headers, org, title=42).status_code == 422

        req = make_requisition(org)
        res = client.post(f"{BASE}/{req.id}/comments", json={"body": ["hi"]}, headers=headers)
        assert res.status_code == 422

    def test_body_must_be_an_object(self, client, org, auth_headers):
        req = make_requisition(org)
        res = client.post(
            f"{BASE}/{req.id}/transition", json=["pending"], headers=auth_headers(org.submitter, org.org),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"body": "list"}
