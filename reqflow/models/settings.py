"""
Requisition Workflow Platform
Organization settings and counter models.

Models:
    - OrganizationSettings: one row per organization; holds the item-code and
      requisition-number counters plus email rendering settings
    - RateLimitLog: attempt counter, one row per (endpoint, identifier)
"""

from datetime import datetime, timezone

from reqflow.models import db
from reqflow.models.base import TenantModel


class OrganizationSettings(TenantModel):
    """Per-organization configuration record.

    The ``*_next_number`` columns are counters: they are only ever advanced
    by a single atomic UPDATE (see services/code_generator.py).
    """

    __tablename__ = "organization_settings"
    __table_args__ = (
        db.UniqueConstraint("organization_id", name="uq_organization_settings_org"),
    )

    id = db.Column(db.Integer, primary_key=True)

    item_code_prefix = db.Column(db.String(10), nullable=False, default="ITEM")
    item_code_next_number = db.Column(db.Integer, nullable=False, default=1)
    item_code_padding = db.Column(db.Integer, nullable=False, default=3)

    requisition_prefix = db.Column(db.String(10), nullable=False, default="REQ")
    requisition_next_number = db.Column(db.Integer, nullable=False, default=1)
    requisition_padding = db.Column(db.Integer, nullable=False, default=5)

    currency_code = db.Column(db.String(3), nullable=True, comment="NULL = DEFAULT_CURRENCY")
    app_base_url = db.Column(db.String(300), nullable=True, comment="NULL = APP_BASE_URL")

    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "item_code_prefix": self.item_code_prefix,
            "item_code_next_number": self.item_code_next_number,
            "item_code_padding": self.item_code_padding,
            "requisition_prefix": self.requisition_prefix,
            "requisition_next_number": self.requisition_next_number,
            "currency_code": self.currency_code,
            "app_base_url": self.app_base_url,
        }


class RateLimitLog(db.Model):
    """Attempt counter for one identifier against one endpoint.

    One row per (endpoint, identifier); the row is reopened in place when
    its window has elapsed.
    """

    __tablename__ = "rate_limit_log"
    __table_args__ = (
        db.UniqueConstraint("endpoint", "identifier", name="uq_rate_limit_endpoint_identifier"),
    )

    id = db.Column(db.Integer, primary_key=True)
    endpoint = db.Column(db.String(100), nullable=False)
    identifier = db.Column(db.String(255), nullable=False, comment="IP address, email, user id ...")
    attempt_count = db.Column(db.Integer, nullable=False, default=1)
    first_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
