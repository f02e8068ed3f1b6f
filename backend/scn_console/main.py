"""SCN Operating System console — FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import asyncio
import logging

import httpx

from scn_console.config import Settings, settings as default_settings
from scn_console.middleware.audit_middleware import ViewAccessAuditMiddleware
from scn_console.middleware.auth import access_revoked_handler
from scn_console.rbac import Module
from scn_console.services.audit_retention import purge_audit_retention
from scn_console.services.audit_service import AuditEvent, AuditEventCategory, AuditTrailWriter
from scn_console.services.cache import ScopedCache
from scn_console.services.domain_api import AccessRevoked, DomainApiClient
from scn_console.session import DateRange, SessionChange, SessionStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVICE_NAME = "SCN Console API"
VERSION = "1.0.0"

# Granted views of these modules are audited; denials always are.
SENSITIVE_MODULES = [
    Module.SAFEGUARDING,
    Module.AUDIT,
    Module.DONATIONS,
    Module.USERS,
]


def _system_event(writer: AuditTrailWriter, action: str, details: dict | None = None) -> None:
    """Fire a SYSTEM-category audit event (non-blocking)."""
    writer.fire_and_forget(AuditEvent.create(
        action,
        category=AuditEventCategory.SYSTEM,
        resource_type="system",
        details=details,
    ))


def _log_session_change(session_key: str, change: SessionChange) -> None:
    logger.info(
        "Session %s changed %s (role=%s, vertical=%s, reduced_ops=%s)",
        session_key,
        ", ".join(sorted(change.fields)),
        change.current.role.value,
        change.current.vertical.id,
        change.current.reduced_operations_mode,
    )


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    audit_writer: AuditTrailWriter | None = None,
) -> FastAPI:
    settings = settings or default_settings
    writer = audit_writer or AuditTrailWriter(settings.AUDIT_STORAGE_PATH)

    store = SessionStore(DateRange(settings.DEFAULT_DATE_FROM, settings.DEFAULT_DATE_TO))
    domain_api = DomainApiClient(
        settings.DOMAIN_API_BASE_URL,
        timeout=settings.DOMAIN_API_TIMEOUT,
        cache=ScopedCache(ttl_seconds=settings.DOMAIN_CACHE_TTL_SECONDS),
        transport=transport,
    )
    store.add_listener(domain_api.on_session_change)
    store.add_listener(_log_session_change)

    scheduler = AsyncIOScheduler()

    async def run_audit_retention_purge():
        """Purge audit events past their category's retention window."""
        _system_event(writer, "system.scheduler.audit_retention_purge", {"status": "started"})
        try:
            summary = await asyncio.get_running_loop().run_in_executor(
                None, purge_audit_retention, settings.AUDIT_STORAGE_PATH,
            )
            logger.info(f"Audit retention purge: {summary}")
            _system_event(writer, "system.scheduler.audit_retention_purge", {
                "status": "completed", **summary,
            })
        except Exception as e:
            logger.error(f"Audit retention purge failed: {e}")
            _system_event(writer, "system.scheduler.audit_retention_purge", {
                "status": "failed", "error": str(e),
            })

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {SERVICE_NAME}...")
        _system_event(writer, "system.startup", {"domain_api": settings.DOMAIN_API_BASE_URL})

        scheduler.add_job(
            run_audit_retention_purge,
            "interval",
            hours=settings.AUDIT_RETENTION_INTERVAL_HOURS,
            id="audit_retention_purge",
        )
        scheduler.start()
        logger.info("Scheduled jobs started (audit retention)")

        logger.info(f"{SERVICE_NAME} started successfully")
        yield

        # Shutdown
        _system_event(writer, "system.shutdown")
        scheduler.shutdown()
        await domain_api.aclose()
        logger.info(f"{SERVICE_NAME} shut down")

    app = FastAPI(
        title="SCN Operating System",
        description="Role-gated console for the SCN multi-vertical non-profit platform",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_store = store
    app.state.operations = store.operations
    app.state.domain_api = domain_api
    app.state.audit_writer = writer

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-SCN-Reevaluate"],
    )

    # View-access audit middleware
    app.add_middleware(
        ViewAccessAuditMiddleware,
        writer=writer,
        sensitive_modules=SENSITIVE_MODULES,
    )

    app.add_exception_handler(AccessRevoked, access_revoked_handler)

    # Import and register routers
    from scn_console.routes import actions, audit, session, views

    app.include_router(session.router)
    app.include_router(views.router)
    app.include_router(actions.router)
    app.include_router(audit.router)

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "service": SERVICE_NAME, "version": VERSION}

    return app


app = create_app()
