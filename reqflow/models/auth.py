"""
Identity Models — organizations, users, organization memberships.

Roles are modelled as closed enumerations per axis:
    WorkflowRole  global role on the user (may be overridden per organization)
    OrgRole       membership role inside one organization
    ProjectRole   lives on ProjectAssignment (see models/project.py)

The axes are independent: an org ``owner`` can be a workflow ``submitter``.
"""

from datetime import datetime, timezone
from enum import Enum

from reqflow.models import db


class WorkflowRole(str, Enum):
    """Workflow role. Stored on users (global) and organization_members (override)."""
    SUBMITTER = "submitter"
    REVIEWER = "reviewer"
    APPROVER = "approver"
    STORE_MANAGER = "store_manager"
    SUPER_ADMIN = "super_admin"


class OrgRole(str, Enum):
    """Organization membership role."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class OrganizationStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"


ORGANIZATION_PLANS = {"trial", "starter", "professional", "enterprise"}


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    plan = db.Column(db.String(50), nullable=False, default="trial")
    status = db.Column(db.String(20), nullable=False, default=OrganizationStatus.TRIAL.value)
    max_users = db.Column(db.Integer, default=10)
    max_projects = db.Column(db.Integer, default=3)
    max_requisitions_per_month = db.Column(db.Integer, nullable=True, comment="NULL = unlimited")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    members = db.relationship(
        "OrganizationMember", back_populates="organization", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_operational(self) -> bool:
        """Trial and active organizations may run the workflow; suspended may not."""
        return self.status in (OrganizationStatus.TRIAL.value, OrganizationStatus.ACTIVE.value)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "plan": self.plan,
            "status": self.status,
            "max_users": self.max_users,
            "max_projects": self.max_projects,
            "max_requisitions_per_month": self.max_requisitions_per_month,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(
        db.String(30), nullable=False, default=WorkflowRole.SUBMITTER.value,
        comment="Global workflow role; organization_members.workflow_role overrides it",
    )
    email_notifications_enabled = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    memberships = db.relationship(
        "OrganizationMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "email_notifications_enabled": self.email_notifications_enabled,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. ORGANIZATION_MEMBERS
# ═══════════════════════════════════════════════════════════════
class OrganizationMember(db.Model):
    __tablename__ = "organization_members"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default=OrgRole.MEMBER.value)
    workflow_role = db.Column(
        db.String(30), nullable=True,
        comment="Per-organization workflow role; NULL falls back to users.role",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        db.Index("ix_org_members_org_user", "organization_id", "user_id"),
    )

    organization = db.relationship("Organization", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    @property
    def effective_workflow_role(self) -> WorkflowRole:
        raw = self.workflow_role or (self.user.role if self.user else None)
        return WorkflowRole(raw or WorkflowRole.SUBMITTER.value)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "role": self.role,
            "workflow_role": self.effective_workflow_role.value,
            "is_active": self.is_active,
        }
