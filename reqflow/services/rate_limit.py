"""
Requisition Workflow — Attempt-counting Rate Limiter

Counts attempts per (endpoint, identifier) in a single RateLimitLog row. A
window opens with the first attempt and lasts ``window_minutes``; once it has
elapsed the next attempt reopens the row, so limits reset on their own.

Every count is one conditional ``UPDATE ... SET attempt_count = attempt_count + 1``
and the first attempt is an INSERT guarded by the (endpoint, identifier)
unique key, so concurrent callers never lose or double an attempt. The work
runs in a savepoint on the caller's session: the caller's pending changes are
neither committed nor discarded, and the caller owns the commit.

This is the application-level limiter for sensitive operations (login,
invitations, ...). HTTP-level per-blueprint limits are Flask-Limiter's job
(middleware/rate_limiter.py).

Usage:
    result = check_rate_limit("login", email)
    db.session.commit()
    if not result.allowed:
        return api_error(E.RATE_LIMITED, "Too many attempts",
                         details={"retry_after": result.retry_after})
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError

from reqflow.models import db
from reqflow.models.settings import RateLimitLog

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_WINDOW_MINUTES = 60


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int | None = None   # seconds until the window closes; None when allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "attempts_remaining": self.remaining,
            "retry_after": self.retry_after,
        }


def _as_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _key(endpoint: str, identifier: str):
    return (RateLimitLog.endpoint == endpoint, RateLimitLog.identifier == identifier)


def _count_attempt(endpoint, identifier, max_attempts, window_start, now) -> int | None:
    """Count one attempt against the existing row. Returns the new count, or None.

    None means there is no row yet, or the open window is already full.
    """
    key = _key(endpoint, identifier)
    counted = db.session.execute(
        update(RateLimitLog)
        .where(*key,
               RateLimitLog.first_attempt_at > window_start,
               RateLimitLog.attempt_count < max_attempts)
        .values(attempt_count=RateLimitLog.attempt_count + 1, last_attempt_at=now)
        .execution_options(synchronize_session=False)
    )
    if counted.rowcount:
        return db.session.execute(select(RateLimitLog.attempt_count).where(*key)).scalar_one()

    reopened = db.session.execute(
        update(RateLimitLog)
        .where(*key, RateLimitLog.first_attempt_at <= window_start)
        .values(attempt_count=1, first_attempt_at=now, last_attempt_at=now)
        .execution_options(synchronize_session=False)
    )
    return 1 if reopened.rowcount else None


def _open_window(endpoint, identifier, now) -> bool:
    """Insert the first attempt. False when a concurrent caller inserted it first."""
    try:
        with db.session.begin_nested():
            db.session.execute(insert(RateLimitLog).values(
                endpoint=endpoint,
                identifier=identifier,
                attempt_count=1,
                first_attempt_at=now,
                last_attempt_at=now,
                created_at=now,
            ))
    except IntegrityError:
        return False
    return True


def check_rate_limit(
    endpoint: str,
    identifier: str,
    max_attempts: int | None = None,
    window_minutes: int | None = None,
    now: datetime | None = None,
) -> RateLimitResult:
    """Record one attempt and report whether it is allowed.

    Denied attempts are not counted, so a blocked identifier is released as
    soon as its window closes. Flushes only; the caller commits.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get("RATE_LIMIT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    if window_minutes is None:
        window_minutes = current_app.config.get("RATE_LIMIT_WINDOW_MINUTES", DEFAULT_WINDOW_MINUTES)
    now = now or datetime.now(timezone.utc)
    window = timedelta(minutes=window_minutes)
    window_start = now - window

    with db.session.begin_nested():
        count = _count_attempt(endpoint, identifier, max_attempts, window_start, now)
        if count is None and _open_window(endpoint, identifier, now):
            count = 1
        if count is None:
            # Lost the insert race, or the window is full
            count = _count_attempt(endpoint, identifier, max_attempts, window_start, now)

        if count is not None:
            return RateLimitResult(allowed=True, remaining=max(max_attempts - count, 0))

        first_attempt_at = db.session.execute(
            select(RateLimitLog.first_attempt_at).where(*_key(endpoint, identifier))
        ).scalar_one()

    retry_after = int((_as_aware(first_attempt_at) + window - now).total_seconds())
    logger.warning(
        "Rate limit exceeded for %s on %s", identifier, endpoint,
        extra={"event_type": "rate_limited"},
    )
    return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 0))


def cleanup_rate_limit_logs(older_than_hours: int = 24, now: datetime | None = None) -> int:
    """Delete rate-limit rows idle for more than ``older_than_hours``. Returns the count."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=older_than_hours)
    deleted = db.session.execute(
        delete(RateLimitLog)
        .where(RateLimitLog.last_attempt_at < cutoff)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.session.commit()
    logger.info("Removed %d rate limit log rows idle for more than %dh", deleted, older_than_hours)
    return deleted
