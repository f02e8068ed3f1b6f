"""View routes — role-gated, redacted module views for the console.

Each view reports its module and outcome to the view-access audit trail, so
every safeguarding attempt and every denial is recorded.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from scn_console.middleware.auth import (
    get_domain_api,
    get_session_context,
    get_snapshot,
    record_view_access,
)
from scn_console.rbac import Module, coerce_module
from scn_console.services.domain_api import DomainApiClient
from scn_console.services.views import (
    MODULE_SOURCES,
    NO_DETAIL,
    build_dashboard_view,
    build_detail_view,
    build_list_view,
)
from scn_console.session import SessionContext, SessionSnapshot

router = APIRouter(prefix="/api/views", tags=["views"])


def _resolve(module: str) -> Module:
    resolved = coerce_module(module)
    if resolved not in MODULE_SOURCES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown module '{module}'")
    return resolved


@router.get("/dashboard")
async def dashboard_view(
    snapshot: SessionSnapshot = Depends(get_snapshot),
    context: SessionContext = Depends(get_session_context),
    api: DomainApiClient = Depends(get_domain_api),
):
    return await build_dashboard_view(snapshot, api, context.snapshot)


@router.get("/{module}")
async def module_view(
    module: str,
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None),
    donor_safe: bool = Query(False),
    snapshot: SessionSnapshot = Depends(get_snapshot),
    context: SessionContext = Depends(get_session_context),
    api: DomainApiClient = Depends(get_domain_api),
):
    """List view of a module.

    A role without access gets ``access: "denied"`` and the denied panel, not
    an error status; the page itself is still reachable.
    """
    resolved = _resolve(module)
    filters = {"search": search} if search else None
    view = await build_list_view(
        resolved, snapshot, api, context.snapshot,
        filters=filters, page=page, page_size=page_size, donor_safe=donor_safe,
    )
    record_view_access(request, resolved, view["access"] == "granted")
    return view


@router.get("/{module}/{item_id}")
async def module_item_view(
    module: str,
    item_id: str,
    request: Request,
    donor_safe: bool = Query(False),
    snapshot: SessionSnapshot = Depends(get_snapshot),
    context: SessionContext = Depends(get_session_context),
    api: DomainApiClient = Depends(get_domain_api),
):
    resolved = _resolve(module)
    if resolved in NO_DETAIL:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Module '{module}' has no record view",
        )

    view = await build_detail_view(
        resolved, item_id, snapshot, api, context.snapshot, donor_safe=donor_safe,
    )
    record_view_access(request, resolved, view["access"] == "granted", resource_id=item_id)
    return view
