"""Module view assembly.

Fetches a module's data from the domain API on behalf of a session snapshot
and runs it through the display rules.  Gating happens twice: before the
fetch, so a denied module never reaches the upstream, and again when the view
is rendered, against the session as it is *then*.  A role switch that lands
while a fetch is in flight therefore still gets the denied panel.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from scn_console.navigation import module_title
from scn_console.rbac import Module
from scn_console.redaction import (
    DONOR_SAFE_NOTICE,
    PORTAL_ONLY_NOTICE,
    SAFEGUARDING_NOTICE,
    access_denied_panel,
    can_view_module,
    effective_donor_safe,
    headcount_widget,
    payment_actions_allowed,
    reduced_operations_banner,
    redact_contact,
    redact_dashboard_stats,
    redact_donation,
    render_message,
)
from scn_console.services.domain_api import DomainApiClient, UpstreamError
from scn_console.session import SessionSnapshot

logger = logging.getLogger(__name__)

SnapshotSource = Callable[[], SessionSnapshot]

# Upstream collection behind each module's list view.
MODULE_SOURCES: dict[Module, str] = {
    Module.MULTI_VERTICAL: "dashboard/vertical-health",
    Module.USERS: "users",
    Module.CONTACTS: "contacts",
    Module.DONATIONS: "donations",
    Module.FEES: "fees/waivers",
    Module.VOLUNTEERS: "volunteers",
    Module.PROCUREMENT: "requisitions",
    Module.HR: "staff",
    Module.PROGRAMS: "programs",
    Module.SAFEGUARDING: "safeguarding/cases",
    Module.EVENTS: "events",
    Module.EXCEPTIONS: "exceptions",
    Module.MESSAGING: "messages",
    Module.REPORTS: "reports",
    Module.AUDIT: "audit",
}

# Entity whose summary figures are shown above a list.
STATS_ENTITIES: dict[Module, str] = {
    Module.DONATIONS: "donations",
    Module.FEES: "fees",
    Module.VOLUNTEERS: "volunteers",
    Module.PROCUREMENT: "requisitions",
    Module.HR: "staff",
    Module.PROGRAMS: "programs",
    Module.SAFEGUARDING: "safeguarding",
    Module.EXCEPTIONS: "exceptions",
}

# Modules whose list has no per-record detail page.
NO_DETAIL: frozenset[Module] = frozenset({Module.MULTI_VERTICAL, Module.REPORTS})

PAYMENT_MODULES: frozenset[Module] = frozenset({
    Module.DONATIONS, Module.FEES, Module.PROCUREMENT,
})

PORTAL_ONLY_RULE_NOTICE: dict[str, str] = {
    "title": "Portal-Only Rule",
    "message": f'Restricted alerts display "{PORTAL_ONLY_NOTICE}"',
}


# ---------------------------------------------------------------------------
# View scaffolding
# ---------------------------------------------------------------------------


def base_view(module: Module, snapshot: SessionSnapshot) -> dict[str, Any]:
    view: dict[str, Any] = {
        "module": module.value,
        "title": module_title(module),
        "access": "granted",
        "panel": None,
        "banner": reduced_operations_banner(snapshot),
        "notices": [],
        "error": None,
        "scope": snapshot.to_dict(),
    }
    if module in PAYMENT_MODULES:
        view["payment_actions_enabled"] = payment_actions_allowed(snapshot)
    return view


def denied_view(module: Module, snapshot: SessionSnapshot) -> dict[str, Any]:
    view = base_view(module, snapshot)
    view.update(
        access="denied",
        panel=access_denied_panel(module),
        items=[],
        total=0,
    )
    view.pop("payment_actions_enabled", None)
    return view


def revoked_during_fetch(module: Module, fetched_with: SessionSnapshot, latest: SessionSnapshot) -> bool:
    """True when the session changed mid-fetch and no longer grants *module*."""
    return latest.version != fetched_with.version and not can_view_module(module, latest)


# ---------------------------------------------------------------------------
# Record rendering
# ---------------------------------------------------------------------------


def render_record(
    module: Module,
    record: Any,
    donor_safe: bool,
) -> Any:
    if not isinstance(record, dict):
        return record
    if module is Module.DONATIONS:
        return redact_donation(record, donor_safe)
    if module is Module.CONTACTS:
        return redact_contact(record, donor_safe)
    if module is Module.MESSAGING:
        return render_message(record)
    return dict(record)


def _module_notices(module: Module, donor_safe: bool) -> list[dict[str, str]]:
    notices: list[dict[str, str]] = []
    if donor_safe and module in (Module.DONATIONS, Module.CONTACTS):
        notices.append(dict(DONOR_SAFE_NOTICE))
    if module is Module.SAFEGUARDING:
        notices.append(dict(SAFEGUARDING_NOTICE))
    if module is Module.MESSAGING:
        notices.append(dict(PORTAL_ONLY_RULE_NOTICE))
    return notices


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


async def build_list_view(
    module: Module,
    snapshot: SessionSnapshot,
    api: DomainApiClient,
    latest: SnapshotSource,
    *,
    filters: dict[str, Any] | None = None,
    page: int = 1,
    page_size: int = 10,
    donor_safe: bool = False,
) -> dict[str, Any]:
    """Paginated list view of *module*.

    ``AccessRevoked`` from the domain API propagates; every other upstream
    failure becomes the view's ``error`` block.
    """
    if not can_view_module(module, snapshot):
        return denied_view(module, snapshot)

    donor_safe = effective_donor_safe(snapshot.role, donor_safe)
    view = base_view(module, snapshot)
    view.update(items=[], total=0, page=page, page_size=page_size, total_pages=0)
    if module in (Module.DONATIONS, Module.CONTACTS):
        view["donor_safe"] = donor_safe
    if module is Module.MESSAGING:
        view["delivery_mode"] = "portal-only" if snapshot.reduced_operations_mode else "all-channels"
    view["notices"] = _module_notices(module, donor_safe)

    try:
        listing = await api.list_items(
            MODULE_SOURCES[module], snapshot, filters=filters, page=page, limit=page_size,
        )
        stats = None
        if module in STATS_ENTITIES:
            stats = await api.get_stats(STATS_ENTITIES[module], snapshot)
    except UpstreamError as exc:
        logger.info("List view %s failed upstream: %s", module.value, exc.message)
        view["error"] = exc.to_dict()
        return view

    current = latest()
    if revoked_during_fetch(module, snapshot, current):
        logger.info("Discarding %s view: session changed to %s mid-fetch", module.value, current.role.value)
        return denied_view(module, current)

    view.update(listing)
    view["items"] = [render_record(module, r, donor_safe) for r in listing["items"]]
    if stats is not None:
        view["stats"] = stats
    return view


async def build_detail_view(
    module: Module,
    item_id: str,
    snapshot: SessionSnapshot,
    api: DomainApiClient,
    latest: SnapshotSource,
    *,
    donor_safe: bool = False,
) -> dict[str, Any]:
    if not can_view_module(module, snapshot):
        return denied_view(module, snapshot)

    donor_safe = effective_donor_safe(snapshot.role, donor_safe)
    view = base_view(module, snapshot)
    view.update(item=None, notices=_module_notices(module, donor_safe))

    try:
        record = await api.get_item(MODULE_SOURCES[module], item_id, snapshot)
        notes = None
        if module is Module.SAFEGUARDING:
            notes = await api.get_json(f"{MODULE_SOURCES[module]}/{item_id}/notes", snapshot)
    except UpstreamError as exc:
        logger.info("Detail view %s/%s failed upstream: %s", module.value, item_id, exc.message)
        view["error"] = exc.to_dict()
        return view

    current = latest()
    if revoked_during_fetch(module, snapshot, current):
        return denied_view(module, current)

    if isinstance(record, dict) and isinstance(record.get("data"), dict):
        record = record["data"]
    view["item"] = render_record(module, record, donor_safe)
    if notes is not None:
        view["notes"] = notes.get("data", notes) if isinstance(notes, dict) else notes
    return view


async def build_dashboard_view(
    snapshot: SessionSnapshot,
    api: DomainApiClient,
    latest: SnapshotSource,
) -> dict[str, Any]:
    """Landing view: KPIs for the active vertical plus the headcount widget."""
    view = base_view(Module.DASHBOARD, snapshot)
    view.update(
        vertical=snapshot.vertical.to_dict(),
        kpis={},
        headcount=None,
        tier1_risks=[],
    )

    try:
        stats = await api.get_json("dashboard/stats", snapshot) or {}
    except UpstreamError as exc:
        logger.info("Dashboard stats failed upstream: %s", exc.message)
        view["error"] = exc.to_dict()
        return view
    if isinstance(stats.get("data"), dict):
        stats = stats["data"]

    # The headcount widget follows the role the user holds when it renders.
    current = latest()
    view["kpis"] = redact_dashboard_stats(stats, current)
    view["kpis"].pop("tier1_risks", None)
    view["headcount"] = headcount_widget(current, stats)
    view["tier1_risks"] = list(stats.get("tier1_risks") or [])
    return view
