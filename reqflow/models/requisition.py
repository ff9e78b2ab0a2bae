"""
Requisition Workflow Platform
Requisition domain model.

Models:
    - Requisition: the workflow subject (one live status at a time)
    - RequisitionComment: discussion thread on a requisition

State machine (REQUISITION_TRANSITIONS):
    draft     -> pending | rejected
    pending   -> reviewed | rejected
    reviewed  -> approved | rejected
    approved  -> (terminal)
    rejected  -> (terminal)
"""

from datetime import datetime, timezone
from enum import Enum

from reqflow.models import db
from reqflow.models.base import TenantModel


class RequisitionStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


REQUISITION_TRANSITIONS: dict[RequisitionStatus, frozenset[RequisitionStatus]] = {
    RequisitionStatus.DRAFT: frozenset({RequisitionStatus.PENDING, RequisitionStatus.REJECTED}),
    RequisitionStatus.PENDING: frozenset({RequisitionStatus.REVIEWED, RequisitionStatus.REJECTED}),
    RequisitionStatus.REVIEWED: frozenset({RequisitionStatus.APPROVED, RequisitionStatus.REJECTED}),
    RequisitionStatus.APPROVED: frozenset(),
    RequisitionStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in REQUISITION_TRANSITIONS.items() if not targets
)


class Requisition(TenantModel):
    """Purchase requisition moving through the approval workflow."""

    __tablename__ = "requisitions"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "requisition_number", name="uq_requisition_org_number"),
        TenantModel.tenant_composite_index("requisitions", "status"),
        TenantModel.tenant_composite_index("requisitions", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    requisition_number = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=RequisitionStatus.DRAFT.value)

    # Actor stamps
    submitted_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    submitter = db.relationship("User", foreign_keys=[submitted_by])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])
    approver = db.relationship("User", foreign_keys=[approved_by])
    organization = db.relationship("Organization")
    comments = db.relationship(
        "RequisitionComment", back_populates="requisition", lazy="dynamic",
        cascade="all, delete-orphan", order_by="RequisitionComment.created_at",
    )

    @property
    def status_enum(self) -> RequisitionStatus:
        return RequisitionStatus(self.status)

    def snapshot(self) -> dict:
        """Workflow-relevant fields, used verbatim as audit old/new values."""
        return {
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "requisition_number": self.requisition_number,
            "title": self.title,
            "description": self.description,
            "amount": str(self.amount) if self.amount is not None else None,
            "status": self.status,
            "submitted_by": self.submitted_by,
            "reviewed_by": self.reviewed_by,
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Requisition {self.id}: {self.requisition_number} [{self.status}]>"


class RequisitionComment(TenantModel):
    """Comment left on a requisition by any organization member."""

    __tablename__ = "requisition_comments"

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(
        db.Integer, db.ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    requisition = db.relationship("Requisition", back_populates="comments")
    author = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "user_id": self.user_id,
            "body": self.body,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
