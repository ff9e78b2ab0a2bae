"""Project domain model: projects and per-project user assignments."""

from datetime import datetime, timezone
from enum import Enum

from reqflow.models import db
from reqflow.models.base import TenantModel


class ProjectRole(str, Enum):
    """Project-level role. May differ from the user's organization-wide role."""
    SUBMITTER = "submitter"
    REVIEWER = "reviewer"
    APPROVER = "approver"


class Project(TenantModel):
    """Scoping unit inside an organization; requisitions are raised against one."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    assignments = db.relationship(
        "ProjectAssignment", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectAssignment(TenantModel):
    """Explicit user -> project assignment with an optional project-level role.

    ``role`` NULL means the user's organization workflow role applies on
    this project.
    """

    __tablename__ = "project_assignments"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=True, comment="submitter | reviewer | approver")
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_assignment"),
    )

    project = db.relationship("Project", back_populates="assignments")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
        }
