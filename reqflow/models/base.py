"""
TenantModel — Abstract base class for organization-scoped models.

All models that need tenant isolation inherit from TenantModel instead of
db.Model directly. This adds:
  - organization_id FK column (NOT NULL) with index
  - query_for_organization(organization_id) classmethod
  - Composite index macro helper
"""

from reqflow.models import db


class TenantModel(db.Model):
    """Abstract base for organization-scoped tables."""
    __abstract__ = True

    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_organization(cls, organization_id):
        """Return a query filtered by organization_id."""
        return cls.query.filter_by(organization_id=organization_id)

    @classmethod
    def tenant_composite_index(cls, tablename, *extra_cols):
        """Helper to build (organization_id, ...) composite index name+tuple."""
        name = f"ix_{tablename}_org_{'_'.join(extra_cols)}"
        cols = ("organization_id",) + extra_cols
        return db.Index(name, *cols)
