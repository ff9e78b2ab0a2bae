"""
Requisition Workflow Platform
Email Content Generator.

Renders subject, HTML body and plain-text body for a requisition workflow
email. Rendering is deterministic: the output depends only on stored
requisition/organization data and the arguments (no clock reads), so the
same inputs always produce byte-identical content.

User-supplied values (titles, names, reasons) are HTML-escaped in the HTML
body via markupsafe; the text body carries the same facts unescaped.

Configuration:
    APP_BASE_URL               fallback when the organization has no app_base_url
    DEFAULT_ORGANIZATION_NAME  fallback organization display name
    DEFAULT_CURRENCY           fallback when the organization has no currency_code
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from markupsafe import Markup, escape

from reqflow.core.exceptions import NotFoundError, ValidationError
from reqflow.models import db
from reqflow.models.notification import NotificationType
from reqflow.models.requisition import Requisition
from reqflow.models.settings import OrganizationSettings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://requisition-workflow.vercel.app"
DEFAULT_ORGANIZATION_NAME = "Requisition Workflow"
DEFAULT_CURRENCY = "UGX"


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html_body: str
    text_body: str


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

# "intro" takes {org}; "rows" names the detail rows in display order.
_TEMPLATES: dict[str, dict] = {
    NotificationType.REQUISITION_SUBMITTED.value: {
        "subject": "New Requisition Submitted: {number}",
        "heading": "New Requisition Submitted",
        "color": "#2563eb",
        "intro": "A new requisition has been submitted in {org} and requires your attention.",
        "rows": ("number", "title", "submitter", "project", "amount"),
    },
    NotificationType.REQUISITION_REVIEWED.value: {
        "subject": "Requisition Reviewed: {number}",
        "heading": "Requisition Reviewed",
        "color": "#7c3aed",
        "intro": "Your requisition in {org} has been reviewed and is pending approval.",
        "rows": ("number", "title", "amount", "actor"),
        "actor_label": "Reviewed By",
    },
    NotificationType.REQUISITION_PENDING_APPROVAL.value: {
        "subject": "Requisition Pending Approval: {number}",
        "heading": "Requisition Pending Approval",
        "color": "#d97706",
        "intro": "A requisition in {org} has been reviewed and needs your approval.",
        "rows": ("number", "title", "submitter", "project", "amount", "actor"),
        "actor_label": "Reviewed By",
    },
    NotificationType.REQUISITION_APPROVED.value: {
        "subject": "Requisition Approved: {number}",
        "heading": "Requisition Approved",
        "color": "#059669",
        "intro": "Your requisition in {org} has been approved!",
        "rows": ("number", "title", "amount", "actor"),
        "actor_label": "Approved By",
    },
    NotificationType.REQUISITION_REJECTED.value: {
        "subject": "Requisition Rejected: {number}",
        "heading": "Requisition Rejected",
        "color": "#dc2626",
        "intro": "A requisition in {org} has been rejected.",
        "rows": ("number", "title", "amount", "actor", "reason"),
        "actor_label": "Rejected By",
    },
}

_ROW_LABELS = {
    "number": "Requisition #",
    "title": "Title",
    "submitter": "Submitted By",
    "project": "Project",
    "amount": "Amount",
    "reason": "Reason",
}

_HTML_ROW = Markup(
    '<tr><td style="padding: 8px; font-weight: bold;">{label}:</td>'
    '<td style="padding: 8px;">{value}</td></tr>'
)

_HTML_LAYOUT = Markup(
    "<html><body>"
    '<h2 style="color: {color};">{heading}</h2>'
    "<p>Dear {recipient},</p>"
    "<p>{intro}</p>"
    '<table style="border-collapse: collapse; margin: 20px 0;">{rows}</table>'
    '<p><a href="{link}" style="background-color: {color}; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 6px; display: inline-block;">View Requisition</a></p>'
    '<p style="color: #666; margin-top: 30px;">This is an automated message from {org}.</p>'
    "</body></html>"
)


def supported_types() -> list[str]:
    return sorted(_TEMPLATES)


def format_amount(amount, currency: str) -> str:
    """``UGX 1,250,000``: thousands separators, no decimals."""
    value = Decimal(amount if amount is not None else 0)
    return f"{currency} {value:,.0f}"


def _organization_settings(organization_id: int) -> OrganizationSettings | None:
    return OrganizationSettings.query_for_organization(organization_id).first()


def _rows(template: dict, facts: dict) -> list[tuple[str, str]]:
    rows = []
    for key in template["rows"]:
        if key == "reason" and not facts.get("reason"):
            continue
        label = template["actor_label"] if key == "actor" else _ROW_LABELS[key]
        rows.append((label, facts[key]))
    return rows


def generate_email_content(
    requisition_id: int,
    recipient_name: str,
    event_type: str,
    actor_name: str | None = None,
    reason: str | None = None,
) -> EmailContent:
    """
    Render the email for ``event_type`` about one requisition.

    Raises:
        ValidationError: ``event_type`` has no template.
        NotFoundError: requisition does not exist.
    """
    event_type = getattr(event_type, "value", event_type)
    template = _TEMPLATES.get(event_type)
    if template is None:
        raise ValidationError(
            f"Unknown email template: {event_type}",
            details={"event_type": event_type, "supported": supported_types()},
        )

    requisition = db.session.get(Requisition, requisition_id)
    if requisition is None:
        raise NotFoundError(resource="Requisition", resource_id=requisition_id)

    settings = _organization_settings(requisition.organization_id)
    config = current_app.config
    org_name = (
        requisition.organization.name if requisition.organization and requisition.organization.name
        else config.get("DEFAULT_ORGANIZATION_NAME", DEFAULT_ORGANIZATION_NAME)
    )
    base_url = (
        (settings.app_base_url if settings and settings.app_base_url else None)
        or config.get("APP_BASE_URL")
        or DEFAULT_BASE_URL
    ).rstrip("/")
    currency = (
        (settings.currency_code if settings and settings.currency_code else None)
        or config.get("DEFAULT_CURRENCY", DEFAULT_CURRENCY)
    )

    facts = {
        "number": requisition.requisition_number,
        "title": requisition.title,
        "submitter": requisition.submitter.display_name if requisition.submitter else "N/A",
        "project": requisition.project.name if requisition.project else "N/A",
        "amount": format_amount(requisition.amount, currency),
        "actor": actor_name or "N/A",
        "reason": reason,
    }
    link = f"{base_url}/requisitions/{requisition.id}"
    rows = _rows(template, facts)

    subject = template["subject"].format(number=requisition.requisition_number)

    html_body = _HTML_LAYOUT.format(
        color=template["color"],
        heading=template["heading"],
        recipient=recipient_name,
        intro=escape(template["intro"]).replace(
            "{org}", Markup("<strong>{}</strong>").format(org_name),
        ),
        rows=Markup("").join(_HTML_ROW.format(label=label, value=value) for label, value in rows),
        link=link,
        org=org_name,
    )

    text_lines = [
        template["heading"],
        "",
        f"Dear {recipient_name},",
        "",
        template["intro"].format(org=org_name),
        "",
        *(f"{label}: {value}" for label, value in rows),
        "",
        f"View requisition at: {link}",
        "",
        f"This is an automated message from {org_name}.",
    ]

    logger.debug(
        "Rendered %s email for requisition %s", event_type, requisition_id,
        extra={"requisition_id": requisition_id, "organization_id": requisition.organization_id},
    )
    return EmailContent(subject=subject, html_body=str(html_body), text_body="\n".join(text_lines))
