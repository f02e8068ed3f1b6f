"""Session routes — current role/vertical/date range, navigation, registries."""
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from scn_console.config import Settings
from scn_console.middleware.auth import (
    get_session_binding,
    get_session_context,
    get_session_store,
    get_settings,
    get_snapshot,
    record_view_access,
    write_audit_log,
)
from scn_console.navigation import build_navigation
from scn_console.rbac import (
    OPERATIONS_ADMIN_ROLES,
    ROLES,
    Module,
    Role,
    coerce_module,
    get_role_info,
    role_matrix,
)
from scn_console.redaction import can_view_module, reduced_operations_banner
from scn_console.services.audit_service import AccessOutcome
from scn_console.session import InvalidSessionValue, SessionContext, SessionSnapshot, SessionStore
from scn_console.verticals import VERTICALS

router = APIRouter(prefix="/api/session", tags=["session"])


class RoleSwitch(BaseModel):
    role: str


class VerticalSwitch(BaseModel):
    vertical_id: str


class DateRangeUpdate(BaseModel):
    date_from: date
    date_to: date


class ReducedOperationsUpdate(BaseModel):
    enabled: bool


def session_payload(snapshot: SessionSnapshot, binding: dict) -> dict:
    info = get_role_info(snapshot.role)
    return {
        "session": snapshot.to_dict(),
        "authenticated": binding["authenticated"],
        "role": info.to_dict() if info else None,
        "vertical": snapshot.vertical.to_dict(),
        "navigation": build_navigation(snapshot),
        "banner": reduced_operations_banner(snapshot),
    }


def _apply(
    request: Request,
    context: SessionContext,
    binding: dict,
    action: str,
    **changes,
) -> dict:
    before = context.snapshot()
    try:
        after = context.update(**changes)
    except InvalidSessionValue as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if after.version != before.version:
        write_audit_log(
            request, action, after, "session", binding["key"],
            {"before": before.to_dict(), "after": after.to_dict()},
        )
    return session_payload(after, binding)


@router.get("")
async def get_session(
    snapshot: SessionSnapshot = Depends(get_snapshot),
    binding: dict = Depends(get_session_binding),
):
    return session_payload(snapshot, binding)


@router.put("/role")
async def switch_role(
    body: RoleSwitch,
    request: Request,
    context: SessionContext = Depends(get_session_context),
    binding: dict = Depends(get_session_binding),
    settings: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_session_store),
):
    """Role switcher.  An admin/test override, not the primary mechanism:
    authenticated sessions take their role from the token, and only a
    super-admin identity may impersonate another role."""
    if not settings.ROLE_OVERRIDE_ENABLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Role override is disabled; the role comes from the authenticated identity.",
        )
    bound = store.bound_role(binding["key"])
    if bound is not None and bound is not Role.SUPER_ADMIN:
        write_audit_log(
            request, "session.role.switch.denied", context.snapshot(), "session", binding["key"],
            {"identity_role": bound.value, "requested_role": body.role},
            outcome=AccessOutcome.DENIED,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{bound.value}' cannot switch roles; the role comes from the authenticated identity.",
        )
    return _apply(request, context, binding, "session.role.switch", role=body.role)


@router.put("/vertical")
async def switch_vertical(
    body: VerticalSwitch,
    request: Request,
    context: SessionContext = Depends(get_session_context),
    binding: dict = Depends(get_session_binding),
):
    return _apply(request, context, binding, "session.vertical.switch", vertical=body.vertical_id)


@router.put("/date-range")
async def set_date_range(
    body: DateRangeUpdate,
    request: Request,
    context: SessionContext = Depends(get_session_context),
    binding: dict = Depends(get_session_binding),
):
    return _apply(
        request, context, binding, "session.date_range.update",
        date_range=(body.date_from, body.date_to),
    )


@router.put("/reduced-operations")
async def set_reduced_operations(
    body: ReducedOperationsUpdate,
    request: Request,
    context: SessionContext = Depends(get_session_context),
    binding: dict = Depends(get_session_binding),
):
    """System-wide switch.  Every session sees the new flag on its next request."""
    role = context.get_current_role()
    if role not in OPERATIONS_ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{role.value}' cannot change reduced operations mode.",
        )
    return _apply(
        request, context, binding, "session.reduced_operations.toggle",
        reduced_operations_mode=body.enabled,
    )


@router.get("/roles")
async def list_roles():
    return {"items": [r.to_dict() for r in ROLES], "total": len(ROLES)}


@router.get("/verticals")
async def list_verticals():
    return {"items": [v.to_dict() for v in VERTICALS], "total": len(VERTICALS)}


@router.get("/navigation")
async def get_navigation(snapshot: SessionSnapshot = Depends(get_snapshot)):
    return build_navigation(snapshot)


@router.get("/access/{module}")
async def check_access(module: str, snapshot: SessionSnapshot = Depends(get_snapshot)):
    """Decision for the current role.  Unknown module names are denied."""
    resolved = coerce_module(module)
    return {
        "role": snapshot.role.value,
        "module": module,
        "can_access": snapshot.can_access_module(module),
        "can_view": can_view_module(resolved, snapshot) if resolved else False,
        "restricted_role": snapshot.is_restricted_role(),
    }


@router.get("/role-matrix")
async def get_role_matrix(request: Request, snapshot: SessionSnapshot = Depends(get_snapshot)):
    granted = can_view_module(Module.USERS, snapshot)
    record_view_access(request, Module.USERS, granted, resource_type="role_matrix")
    if not granted:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{snapshot.role.value}' cannot view the role matrix.",
        )
    return {"items": role_matrix()}
