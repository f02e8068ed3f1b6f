"""
RBAC Permission Registry — SCN Operating System

Defines the canonical role-to-module mapping. Modules are the unit of access
control: a role either sees a module or it does not. Field-level and
record-level shaping (donor-safe view, portal-only messages, safeguarding
gating) lives in ``scn_console.redaction``.

Every lookup is fail-closed: unknown roles and unknown module names resolve
to "deny", never to an exception.
"""
from __future__ import annotations

import dataclasses
import enum


class Role(str, enum.Enum):
    SUPER_ADMIN = "super-admin"
    VERTICAL_ADMIN = "vertical-admin"
    FINANCE = "finance"
    HR = "hr"
    PROCUREMENT = "procurement"
    PROGRAMS_MEL = "programs-mel"
    SAFEGUARDING = "safeguarding"
    DONOR = "donor"
    PARENT = "parent"
    VOLUNTEER = "volunteer"
    VENDOR = "vendor"
    AUDITOR = "auditor"


class Module(str, enum.Enum):
    DASHBOARD = "dashboard"
    MULTI_VERTICAL = "multi-vertical"
    USERS = "users"
    CONTACTS = "contacts"
    DONATIONS = "donations"
    FEES = "fees"
    VOLUNTEERS = "volunteers"
    PROCUREMENT = "procurement"
    HR = "hr"
    PROGRAMS = "programs"
    SAFEGUARDING = "safeguarding"
    EVENTS = "events"
    EXCEPTIONS = "exceptions"
    MESSAGING = "messaging"
    REPORTS = "reports"
    AUDIT = "audit"


WILDCARD = "*"


# ---------------------------------------------------------------------------
# Role catalogue
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class RoleInfo:
    id: Role
    name: str
    level: str
    restricted: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id.value,
            "name": self.name,
            "level": self.level,
            "restricted": self.restricted,
        }


# Ordered: the first entry is the default session role.
ROLES: tuple[RoleInfo, ...] = (
    RoleInfo(Role.SUPER_ADMIN, "Super Admin", "full", True),
    RoleInfo(Role.VERTICAL_ADMIN, "Vertical Admin", "vertical", False),
    RoleInfo(Role.FINANCE, "Finance", "department", False),
    RoleInfo(Role.HR, "HR", "department", False),
    RoleInfo(Role.PROCUREMENT, "Procurement", "department", False),
    RoleInfo(Role.PROGRAMS_MEL, "Programs / MEL", "department", False),
    RoleInfo(Role.SAFEGUARDING, "Safeguarding Officer", "restricted", True),
    RoleInfo(Role.DONOR, "Donor", "external", False),
    RoleInfo(Role.PARENT, "Parent (Educare)", "external", False),
    RoleInfo(Role.VOLUNTEER, "Volunteer", "external", False),
    RoleInfo(Role.VENDOR, "Vendor", "external", False),
    RoleInfo(Role.AUDITOR, "Auditor / Board", "readonly", False),
)

_ROLE_INFO: dict[Role, RoleInfo] = {r.id: r for r in ROLES}


# ---------------------------------------------------------------------------
# Role → Modules mapping (source of truth)
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    # ── Super Admin ──────────────────────────────────────────────────────
    # Bypasses module checks entirely; the wildcard is kept for auditability.
    Role.SUPER_ADMIN: frozenset({WILDCARD}),

    # ── Vertical Admin ───────────────────────────────────────────────────
    # Runs one vertical end to end.  No audit log, no safeguarding.
    Role.VERTICAL_ADMIN: frozenset({
        "dashboard", "multi-vertical", "users", "contacts", "donations",
        "fees", "volunteers", "procurement", "hr", "programs", "events",
        "exceptions", "messaging", "reports",
    }),

    # ── Finance ──────────────────────────────────────────────────────────
    Role.FINANCE: frozenset({
        "dashboard", "donations", "fees", "procurement", "reports", "audit",
    }),

    # ── HR ───────────────────────────────────────────────────────────────
    Role.HR: frozenset({"dashboard", "users", "volunteers", "hr"}),

    # ── Procurement ──────────────────────────────────────────────────────
    Role.PROCUREMENT: frozenset({"dashboard", "procurement"}),

    # ── Programs / MEL ───────────────────────────────────────────────────
    Role.PROGRAMS_MEL: frozenset({"dashboard", "programs", "reports"}),

    # ── Safeguarding Officer ─────────────────────────────────────────────
    Role.SAFEGUARDING: frozenset({"dashboard", "safeguarding"}),

    # ── External portals ─────────────────────────────────────────────────
    Role.DONOR: frozenset({"dashboard", "donations", "reports"}),
    Role.PARENT: frozenset({"dashboard", "fees"}),
    Role.VOLUNTEER: frozenset({"dashboard", "volunteers"}),
    Role.VENDOR: frozenset({"dashboard", "procurement"}),

    # ── Auditor / Board ──────────────────────────────────────────────────
    # Read-only across all verticals.
    Role.AUDITOR: frozenset({
        "dashboard", "audit", "reports", "exceptions", "multi-vertical",
    }),
}

_missing = [r.value for r in Role if r not in ROLE_PERMISSIONS or r not in _ROLE_INFO]
if _missing:
    raise RuntimeError(f"RBAC registry incomplete for roles: {', '.join(_missing)}")


# Roles allowed into safeguarding case detail.
RESTRICTED_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.SAFEGUARDING})

# Roles allowed to switch reduced-operations mode for the whole system.
OPERATIONS_ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.VERTICAL_ADMIN})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def coerce_role(value: Role | str | None) -> Role | None:
    """Return the ``Role`` for *value*, or ``None`` if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except (TypeError, ValueError):
        return None


def coerce_module(value: Module | str | None) -> Module | None:
    """Return the ``Module`` for *value*, or ``None`` if it is not a known module."""
    if isinstance(value, Module):
        return value
    try:
        return Module(value)
    except (TypeError, ValueError):
        return None


def get_role_info(role: Role | str) -> RoleInfo | None:
    resolved = coerce_role(role)
    return _ROLE_INFO.get(resolved) if resolved is not None else None


def get_role_permissions(role: Role | str | None) -> frozenset[str]:
    """Return the module set for a role, or an empty set if unknown."""
    resolved = coerce_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(resolved, frozenset())


def can_access_module(role: Role | str | None, module: Module | str | None) -> bool:
    """Decide whether *role* may open *module*.

    Super-admin is granted everything, including module names that are not
    registered.  Everyone else needs the wildcard or the exact module name in
    their permission set.  Never raises.
    """
    resolved = coerce_role(role)
    if resolved is None:
        return False
    if resolved is Role.SUPER_ADMIN:
        return True

    if isinstance(module, Module):
        name = module.value
    elif isinstance(module, str):
        name = module
    else:
        return False

    permissions = get_role_permissions(resolved)
    return WILDCARD in permissions or name in permissions


def is_restricted_role(role: Role | str | None) -> bool:
    """True iff *role* is super-admin or the safeguarding officer."""
    return coerce_role(role) in RESTRICTED_ROLES


def accessible_modules(role: Role | str | None) -> list[Module]:
    """Registered modules the role can open, in declaration order."""
    return [m for m in Module if can_access_module(role, m)]


def role_matrix() -> list[dict]:
    """Role x module grid for the Users & Roles page."""
    return [
        {
            **info.to_dict(),
            "modules": {m.value: can_access_module(info.id, m) for m in Module},
        }
        for info in ROLES
    ]
