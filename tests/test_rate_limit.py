"""
Tests for the attempt-counting rate limiter (services/rate_limit.py).

Covers:
    - Attempts allowed up to the limit, remaining count decreases
    - Denied attempts report retry_after and are not counted
    - Window expiry resets the counter
    - Identifiers and endpoints are independent
    - Cleanup of old rows
    - The caller owns the transaction (no commit, no rollback of its changes)
"""

from datetime import datetime, timedelta, timezone

from reqflow.models import db
from reqflow.models.requisition import Requisition
from reqflow.models.settings import RateLimitLog
from reqflow.services.rate_limit import cleanup_rate_limit_logs, check_rate_limit
from tests.factories import make_requisition

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _check(identifier="sam@acme.test", at=T0, endpoint="login"):
    return check_rate_limit(endpoint, identifier, max_attempts=3, window_minutes=10, now=at)


class TestCheckRateLimit:
    def test_allows_up_to_limit(self):
        results = [_check(at=T0 + timedelta(seconds=i)) for i in range(3)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]
        assert all(r.retry_after is None for r in results)

    def test_denies_after_limit(self):
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))
        denied = _check(at=T0 + timedelta(minutes=4))
        assert not denied.allowed
        assert denied.remaining == 0
        assert denied.retry_after == 6 * 60

    def test_denied_attempts_not_counted(self):
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))
        _check(at=T0 + timedelta(minutes=1))
        _check(at=T0 + timedelta(minutes=2))
        assert RateLimitLog.query.one().attempt_count == 3

    def test_window_expiry_resets(self):
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))
        fresh = _check(at=T0 + timedelta(minutes=10, seconds=1))
        assert fresh.allowed
        assert fresh.remaining == 2

    def test_identifiers_are_independent(self):
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))
        assert _check(identifier="rita@acme.test", at=T0 + timedelta(seconds=5)).allowed
        assert _check(endpoint="invite", at=T0 + timedelta(seconds=5)).allowed

    def test_config_defaults(self, app):
        result = check_rate_limit("login", "otto@acme.test", now=T0)
        assert result.remaining == app.config["RATE_LIMIT_MAX_ATTEMPTS"] - 1

    def test_to_dict(self):
        assert _check().to_dict() == {"allowed": True, "attempts_remaining": 2, "retry_after": None}


class TestCleanup:
    def test_removes_old_rows_only(self):
        _check(identifier="old", at=T0)
        _check(identifier="new", at=T0 + timedelta(hours=30))

        deleted = cleanup_rate_limit_logs(older_than_hours=24, now=T0 + timedelta(hours=31))

        assert deleted == 1
        assert [r.identifier for r in RateLimitLog.query.all()] == ["new"]


class TestCallerTransaction:
    def test_denied_check_keeps_pending_changes(self, org):
        req = make_requisition(org)
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))

        req.title = "Standing desks"
        assert not _check(at=T0 + timedelta(minutes=1)).allowed
        db.session.commit()

        db.session.expire_all()
        assert db.session.get(Requisition, req.id).title == "Standing desks"

    def test_allowed_check_leaves_commit_to_caller(self, org):
        req = make_requisition(org)

        req.title = "Standing desks"
        assert _check().allowed
        db.session.rollback()

        assert db.session.get(Requisition, req.id).title == "Office chairs"
        assert RateLimitLog.query.count() == 0

    def test_one_row_per_identifier(self):
        for i in range(3):
            _check(at=T0 + timedelta(seconds=i))
        _check(at=T0 + timedelta(minutes=11))
        row = RateLimitLog.query.one()
        assert row.attempt_count == 1
