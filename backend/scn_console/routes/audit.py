"""Audit routes — query the console's own audit trail."""
from __future__ import annotations

import asyncio
import functools
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from scn_console.middleware.auth import get_audit_writer, record_view_access, require_module
from scn_console.rbac import Module, coerce_module, coerce_role
from scn_console.services.audit_service import AccessOutcome, AuditEventCategory, AuditTrailWriter
from scn_console.session import SessionSnapshot

router = APIRouter(prefix="/api/audit", tags=["audit"])


async def _run(func, **kwargs):
    """SQLite reads run on the thread-pool, like the writes."""
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, **kwargs))


@router.get("/events")
async def list_audit_events(
    request: Request,
    role: str | None = Query(None),
    module: str | None = Query(None),
    outcome: AccessOutcome | None = Query(None),
    category: AuditEventCategory | None = Query(None),
    since: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    snapshot: SessionSnapshot = Depends(require_module(Module.AUDIT)),
    writer: AuditTrailWriter = Depends(get_audit_writer),
):
    """Console audit events, newest first, filtered by role, module or outcome."""
    if role is not None and coerce_role(role) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown role '{role}'")
    if module is not None and coerce_module(module) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"Unknown module '{module}'")

    record_view_access(request, Module.AUDIT, True, resource_type="audit_trail")
    items = await _run(
        writer.query,
        role=role, module=module, outcome=outcome, category=category, since=since, limit=limit,
    )
    return {"items": items, "total": len(items)}


@router.get("/denials")
async def list_denials(
    request: Request,
    since: datetime | None = Query(None),
    snapshot: SessionSnapshot = Depends(require_module(Module.AUDIT)),
    writer: AuditTrailWriter = Depends(get_audit_writer),
):
    """Denied access attempts grouped by module and role."""
    record_view_access(request, Module.AUDIT, True, resource_type="audit_trail")
    items = await _run(writer.denial_summary, since=since)
    return {"items": items, "total": len(items)}
