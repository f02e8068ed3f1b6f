"""Display rules that shape data rather than gate it.

Each rule is a stateless function of (snapshot, record) and is re-applied on
every render.  Records are copied before they are changed; the upstream data
is never mutated.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

from scn_console.rbac import Module, Role
from scn_console.session import SessionSnapshot

# ---------------------------------------------------------------------------
# Fixed strings
# ---------------------------------------------------------------------------

REDACTED_DONOR_NAME = "[ANONYMIZED]"
PORTAL_ONLY_NOTICE = "Portal-only alert sent — no details via SMS / WhatsApp / Email."
PORTAL_CHANNEL_LABEL = "Portal Only"
PAYMENTS_FROZEN_MESSAGE = "Payments are frozen while Reduced Operations Mode is active."

REDUCED_OPERATIONS_BANNER: dict[str, str] = {
    "title": "Reduced Operations Mode Active",
    "message": "Payments frozen. Portal-only alerts enabled. Emergency protocols in effect.",
    "severity": "critical",
}

DONOR_SAFE_NOTICE: dict[str, str] = {
    "title": "Donor-Safe View Active",
    "message": "Sensitive operational details are hidden. Showing anonymized, redacted information only.",
}

SAFEGUARDING_DENIED_PANEL: dict[str, str] = {
    "title": "Restricted Access",
    "message": (
        "This module contains sensitive safeguarding data. Access is restricted "
        "to Super Admin and Safeguarding Officers only."
    ),
}

SAFEGUARDING_NOTICE: dict[str, str] = {
    "title": "RESTRICTED",
    "message": (
        "All access to this module is logged. Data shown is redacted. Detailed "
        "information available only in secure case files."
    ),
}

ACCESS_DENIED_PANEL: dict[str, str] = {
    "title": "Access Denied",
    "message": "Your role does not have access to this module.",
}

INDIVIDUAL_DONOR_PATTERN = re.compile(r"individual|anonymous", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Module gating
# ---------------------------------------------------------------------------


def can_view_module(module: Module, snapshot: SessionSnapshot) -> bool:
    """Render-time gate for a module's content.

    Safeguarding uses the stricter restricted-role predicate on top of the
    generic module check.
    """
    if not snapshot.can_access_module(module):
        return False
    if module is Module.SAFEGUARDING:
        return snapshot.is_restricted_role()
    return True


def access_denied_panel(module: Module) -> dict[str, str]:
    if module is Module.SAFEGUARDING:
        return dict(SAFEGUARDING_DENIED_PANEL)
    return dict(ACCESS_DENIED_PANEL)


# ---------------------------------------------------------------------------
# Donor-safe view
# ---------------------------------------------------------------------------


def effective_donor_safe(role: Role, toggle: bool) -> bool:
    """Donors always get the donor-safe view; everyone else uses the toggle."""
    return True if role is Role.DONOR else bool(toggle)


def is_individual_donor_name(name: Any) -> bool:
    return isinstance(name, str) and INDIVIDUAL_DONOR_PATTERN.search(name) is not None


def redact_donor_name(name: Any, donor_safe: bool) -> Any:
    if donor_safe and is_individual_donor_name(name):
        return REDACTED_DONOR_NAME
    return name


def redact_donation(record: Mapping[str, Any], donor_safe: bool) -> dict[str, Any]:
    out = dict(record)
    if "donor_name" in out:
        out["donor_name"] = redact_donor_name(out["donor_name"], donor_safe)
    return out


def redact_contact(record: Mapping[str, Any], donor_safe: bool) -> dict[str, Any]:
    out = dict(record)
    if str(out.get("contact_type", "")).lower() == "donor" and "name" in out:
        out["name"] = redact_donor_name(out["name"], donor_safe)
    return out


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


def render_message(record: Mapping[str, Any]) -> dict[str, Any]:
    """Replace subject/content of restricted messages with the portal notice."""
    out = dict(record)
    if out.get("restricted"):
        out["subject"] = PORTAL_ONLY_NOTICE
        out["content"] = PORTAL_ONLY_NOTICE
        out["type"] = "portal"
        out["channel"] = PORTAL_CHANNEL_LABEL
    return out


def resolve_delivery_type(requested: str, snapshot: SessionSnapshot, restricted: bool = False) -> str:
    """Outbound channel after the portal-only rule.

    Restricted alerts and everything sent during reduced operations go to the
    portal only.
    """
    if restricted or snapshot.reduced_operations_mode:
        return "portal"
    return requested


# ---------------------------------------------------------------------------
# Reduced operations
# ---------------------------------------------------------------------------


def reduced_operations_banner(snapshot: SessionSnapshot) -> dict[str, str] | None:
    return dict(REDUCED_OPERATIONS_BANNER) if snapshot.reduced_operations_mode else None


def payment_actions_allowed(snapshot: SessionSnapshot) -> bool:
    return not snapshot.reduced_operations_mode


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def headcount_widget(snapshot: SessionSnapshot, stats: Mapping[str, Any]) -> dict[str, Any]:
    """Safeguarding case count for restricted roles, staff count for the rest."""
    if snapshot.is_restricted_role():
        return {
            "label": "Safeguarding Cases",
            "value": stats.get("safeguarding_cases"),
            "note": "Active investigation",
        }
    return {
        "label": "Active Staff",
        "value": stats.get("staff_count"),
        "note": "Safeguarding data restricted",
    }


def redact_dashboard_stats(stats: Mapping[str, Any], snapshot: SessionSnapshot) -> dict[str, Any]:
    out = dict(stats)
    if not snapshot.is_restricted_role():
        out.pop("safeguarding_cases", None)
    return out
