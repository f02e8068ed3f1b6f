"""Navigation surface, filtered per role on every render."""
from __future__ import annotations

import dataclasses
from typing import Any

from scn_console.rbac import Module
from scn_console.session import SessionSnapshot


@dataclasses.dataclass(frozen=True)
class NavItem:
    name: str
    href: str
    module: Module
    restricted: bool = False


NAVIGATION: tuple[NavItem, ...] = (
    NavItem("Dashboard", "/", Module.DASHBOARD),
    NavItem("Multi-Vertical Overview", "/verticals", Module.MULTI_VERTICAL),
    NavItem("Users & Roles", "/users", Module.USERS),
    NavItem("Contacts (CRM)", "/contacts", Module.CONTACTS),
    NavItem("Donations & Allocations", "/donations", Module.DONATIONS),
    NavItem("Fees & Subsidies", "/fees", Module.FEES),
    NavItem("Volunteers", "/volunteers", Module.VOLUNTEERS),
    NavItem("Procurement & Inventory", "/procurement", Module.PROCUREMENT),
    NavItem("HR (Staff)", "/hr", Module.HR),
    NavItem("Programs & MEL", "/programs", Module.PROGRAMS),
    NavItem("Safeguarding", "/safeguarding", Module.SAFEGUARDING, restricted=True),
    NavItem("Unified Event Log", "/events", Module.EVENTS),
    NavItem("Exceptions & Escalations", "/exceptions", Module.EXCEPTIONS),
    NavItem("Messaging Log", "/messaging", Module.MESSAGING),
    NavItem("Reports & Evidence Packs", "/reports", Module.REPORTS),
    NavItem("Audit Log", "/audit", Module.AUDIT),
)

# Shown to every role, outside module access control.
GOVERNANCE_ITEMS: tuple[dict[str, str], ...] = (
    {"name": "Board / Auditor View", "href": "/board-view"},
)

_TITLES: dict[Module, str] = {item.module: item.name for item in NAVIGATION}


def module_title(module: Module) -> str:
    return _TITLES.get(module, module.value)


def nav_entry(item: NavItem, snapshot: SessionSnapshot) -> dict[str, Any] | None:
    """Render one navigation item, or ``None`` if the role cannot see it.

    A restricted item stays visible but disabled for roles outside the
    restricted designation, even when the module itself is granted.
    """
    if not snapshot.can_access_module(item.module):
        return None
    disabled = item.restricted and not snapshot.is_restricted_role()
    return {
        "name": item.name,
        "href": "#" if disabled else item.href,
        "module": item.module.value,
        "restricted": item.restricted,
        "locked": item.restricted,
        "disabled": disabled,
    }


def build_navigation(snapshot: SessionSnapshot) -> dict[str, Any]:
    entries = [nav_entry(item, snapshot) for item in NAVIGATION]
    return {
        "main": [e for e in entries if e is not None],
        "governance": [dict(g) for g in GOVERNANCE_ITEMS],
    }
