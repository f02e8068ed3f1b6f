"""Identity and session resolution for the SCN console.

Provides:
- Bearer-token validation (tokens are issued elsewhere; this only decodes)
- ``get_session_binding()`` / ``get_session_context()`` / ``get_snapshot()``
  dependencies
- ``require_module()`` for module-gated actions
- The ``AccessRevoked`` exception handler
- Audit-log helpers
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from scn_console.config import Settings
from scn_console.rbac import Module, coerce_role
from scn_console.redaction import can_view_module
from scn_console.services.audit_service import AccessOutcome, AuditEvent, AuditTrailWriter
from scn_console.services.domain_api import AccessRevoked, DomainApiClient
from scn_console.session import SessionContext, SessionSnapshot, SessionStore

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

SESSION_HEADER = "X-Session-Id"
REEVALUATE_HEADER = "X-SCN-Reevaluate"


# ---------------------------------------------------------------------------
# App-state accessors
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_domain_api(request: Request) -> DomainApiClient:
    return request.app.state.domain_api


def get_audit_writer(request: Request) -> AuditTrailWriter:
    return request.app.state.audit_writer


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def decode_identity(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a bearer token and return ``{"subject", "role"}``.

    Raises ``HTTPException(401)`` when the token is invalid, has no subject,
    or names a role outside the registry.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise credentials_exception

    subject = payload.get("sub")
    role = coerce_role(payload.get("role"))
    if not subject or role is None:
        raise credentials_exception
    return {"subject": str(subject), "role": role}


# ---------------------------------------------------------------------------
# Session dependencies
# ---------------------------------------------------------------------------


async def get_session_binding(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Work out which session this request belongs to.

    Authenticated callers get a session keyed by token subject with the
    token's role bound to it.  Anonymous callers are only accepted while the
    demo role switcher is enabled, keyed by the ``X-Session-Id`` header.
    """
    if credentials is not None:
        identity = decode_identity(credentials.credentials, settings)
        binding = {
            "key": f"user:{identity['subject']}",
            "identity_role": identity["role"],
            "authenticated": True,
        }
    elif settings.ROLE_OVERRIDE_ENABLED:
        binding = {
            "key": f"demo:{request.headers.get(SESSION_HEADER, 'default')}",
            "identity_role": None,
            "authenticated": False,
        }
    else:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.session_binding = binding
    return binding


async def get_session_context(
    request: Request,
    binding: dict[str, Any] = Depends(get_session_binding),
    store: SessionStore = Depends(get_session_store),
) -> SessionContext:
    return store.get_or_create(binding["key"], binding["identity_role"])


async def get_snapshot(
    request: Request,
    context: SessionContext = Depends(get_session_context),
) -> SessionSnapshot:
    """Capture the session once for the whole request."""
    snapshot = context.snapshot()
    binding = request.state.session_binding
    # Read by the audit middleware.
    request.state.audit_session = {
        "session_key": binding["key"],
        "role": snapshot.role.value,
        "vertical": snapshot.vertical.id,
    }
    return snapshot


def require_module(module: Module):
    """Return a dependency that rejects actions on a module the role cannot use.

    Usage::

        @router.post("/donations/{donation_id}/allocate")
        async def allocate(snapshot=Depends(require_module(Module.DONATIONS))):
            ...
    """

    async def _check_module(
        request: Request,
        snapshot: SessionSnapshot = Depends(get_snapshot),
    ) -> SessionSnapshot:
        if not can_view_module(module, snapshot):
            write_audit_log(
                request, "access.denied", snapshot, "module", module.value,
                {"method": request.method, "path": request.url.path},
                module=module, outcome=AccessOutcome.DENIED,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{snapshot.role.value}' cannot use module '{module.value}'.",
            )
        return snapshot

    return _check_module


# ---------------------------------------------------------------------------
# Access revocation
# ---------------------------------------------------------------------------


async def access_revoked_handler(request: Request, exc: AccessRevoked) -> JSONResponse:
    """Upstream refused the session: drop its cached data and re-evaluate it.

    Identity-bound sessions are discarded so the next request rebuilds them
    from the token.  Demo sessions keep their context (resetting them would
    fall back to the default super-admin role) but lose their cached reads.
    """
    binding = getattr(request.state, "session_binding", None)
    key = binding["key"] if binding else None
    store: SessionStore = request.app.state.session_store
    domain_api: DomainApiClient = request.app.state.domain_api

    context = store.get(key) if key else None
    if context is not None:
        domain_api.forget(context.snapshot())
        if store.is_identity_bound(key):
            store.discard(key)

    logger.warning("Access revoked upstream for session %s: %s", key, exc.message)
    write_audit_log(
        request,
        "access.revoked",
        resource_type="session",
        resource_id=key,
        details={"status": exc.status_code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=exc.status_code or status.HTTP_401_UNAUTHORIZED,
        content={"detail": exc.message},
        headers={REEVALUATE_HEADER: "session"},
    )


# ---------------------------------------------------------------------------
# Audit-log helpers
# ---------------------------------------------------------------------------


def write_audit_log(
    request: Request,
    action: str,
    snapshot: SessionSnapshot | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
    *,
    module: Module | None = None,
    outcome: AccessOutcome | None = None,
) -> None:
    """Fire-and-forget an audit event attributed to the request's session."""
    binding = getattr(request.state, "session_binding", None)
    event = AuditEvent.create(
        action,
        session_key=binding["key"] if binding else None,
        role=snapshot.role.value if snapshot else None,
        vertical=snapshot.vertical.id if snapshot else None,
        module=module,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    )
    request.app.state.audit_writer.fire_and_forget(event)


def record_view_access(
    request: Request,
    module: Module,
    granted: bool,
    resource_id: str | None = None,
    resource_type: str | None = None,
) -> None:
    """Tell the view-access audit middleware how this view was resolved."""
    request.state.view_access = {
        "module": module,
        "outcome": AccessOutcome.GRANTED if granted else AccessOutcome.DENIED,
        "resource_id": resource_id,
        "resource_type": resource_type,
    }
