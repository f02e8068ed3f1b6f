"""Records who opened which module view, and whether they got in.

View routes describe the outcome of a request in
``request.state.view_access``::

    {"module": Module.SAFEGUARDING, "outcome": AccessOutcome.DENIED,
     "resource_id": "sg-1"}

Denied views are always recorded.  Granted views are recorded only for the
sensitive modules the middleware is configured with.  Session attribution
comes from ``request.state.audit_session`` (set by ``get_snapshot()``).
"""

from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from scn_console.rbac import Module
from scn_console.services.audit_service import AccessOutcome, AuditEvent, AuditTrailWriter

logger = logging.getLogger(__name__)

# What a single record is called in the trail, per module.
RECORD_TYPES: dict[Module, str] = {
    Module.SAFEGUARDING: "safeguarding_case",
    Module.DONATIONS: "donation",
    Module.CONTACTS: "contact",
    Module.USERS: "user",
    Module.AUDIT: "audit_entry",
}


class ViewAccessAuditMiddleware(BaseHTTPMiddleware):

    def __init__(
        self,
        app,
        writer: AuditTrailWriter,
        sensitive_modules: Iterable[Module],
    ) -> None:
        super().__init__(app)
        self.writer = writer
        self.sensitive_modules = frozenset(sensitive_modules)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        access = getattr(request.state, "view_access", None)
        if access is None:
            return response
        module: Module = access["module"]
        outcome: AccessOutcome = access["outcome"]
        if outcome is AccessOutcome.GRANTED and (
            response.status_code >= 400 or module not in self.sensitive_modules
        ):
            return response

        record_id = access.get("resource_id")
        resource_type = access.get("resource_type") or (
            RECORD_TYPES.get(module, "record") if record_id else "module"
        )
        action = f"view.{module.value}"
        if outcome is AccessOutcome.DENIED:
            action += ".denied"

        session_info = getattr(request.state, "audit_session", None) or {}
        self.writer.fire_and_forget(AuditEvent.create(
            action,
            session_key=session_info.get("session_key"),
            role=session_info.get("role"),
            vertical=session_info.get("vertical"),
            module=module.value,
            outcome=outcome,
            resource_type=resource_type,
            resource_id=record_id or module.value,
            details={
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "status_code": response.status_code,
            },
            ip_address=request.client.host if request.client else None,
        ))
        return response
