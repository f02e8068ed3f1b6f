"""
Test fixtures for the SCN console.

The console app runs in-process behind ``httpx.ASGITransport``.  The external
domain API is replaced by ``FakeDomainApi``, an ``httpx.MockTransport``
handler serving a small seed dataset and recording every request it gets.
Audit events are recorded in memory and written inline instead of being
scheduled as tasks.
"""
import json

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from scn_console.config import Settings
from scn_console.main import create_app
from scn_console.middleware.auth import SESSION_HEADER
from scn_console.services.audit_service import AuditTrailWriter
from scn_console.services.views import MODULE_SOURCES

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
BASE_URL = "http://test"
DOMAIN_API_URL = "http://domain.test/api"
JWT_SECRET = "scn-test-secret"
DEMO_SESSION = "test-session"


# ---------------------------------------------------------------------------
# Seed data served by the fake domain API
# ---------------------------------------------------------------------------

DONATIONS = [
    {"id": "don-1", "donor_name": "Individual Donor #1042", "amount": 5000, "status": "received"},
    {"id": "don-2", "donor_name": "Tata Trusts", "amount": 250000, "status": "allocated"},
    {"id": "don-3", "donor_name": "Anonymous", "amount": 100, "status": "received"},
]

CONTACTS = [
    {"id": "c-1", "name": "Individual Donor #77", "contact_type": "donor"},
    {"id": "c-2", "name": "Individual Volunteer", "contact_type": "volunteer"},
    {"id": "c-3", "name": "Azim Premji Foundation", "contact_type": "donor"},
]

MESSAGES = [
    {"id": "m-1", "subject": "Fee reminder", "content": "Your term fee is due.", "type": "sms", "restricted": False},
    {"id": "m-2", "subject": "Incident report KDC-14", "content": "Case details...", "type": "whatsapp", "restricted": True},
]

SAFEGUARDING_CASES = [
    {"id": "sg-1", "case_number": "SG-2024-001", "status": "open", "severity": "high"},
]

DASHBOARD_STATS = {
    "total_donations": 255100,
    "active_programs": 12,
    "staff_count": 142,
    "safeguarding_cases": 3,
    "tier1_risks": [{"id": "risk-1", "title": "Therapy center license renewal overdue"}],
}

DATASETS = {
    "donations": DONATIONS,
    "contacts": CONTACTS,
    "messages": MESSAGES,
    "safeguarding/cases": SAFEGUARDING_CASES,
    "audit": [{"id": "a-1", "action": "donation.allocate", "user": "finance"}],
    "volunteers": [{"id": "v-1", "name": "Asha", "hours": 12}],
}

COLLECTIONS = set(MODULE_SOURCES.values())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeDomainApi:
    """Stand-in for the SCN domain REST API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.overrides: dict = {}
        self.datasets = {k: [dict(r) for r in v] for k, v in DATASETS.items()}

    def respond(self, method: str, path: str, status_code: int = 200, json=None, handler=None):
        """Override the response for ``method path`` (path without ``/api/``)."""
        self.overrides[(method, path)] = handler or (
            lambda request: httpx.Response(status_code, json=json)
        )

    def calls(self, path: str, method: str = "GET") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and _api_path(r) == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = _api_path(request)

        override = self.overrides.get((request.method, path))
        if override is not None:
            return override(request)

        if request.method != "GET":
            body = json.loads(request.content) if request.content else {}
            return httpx.Response(200, json={"data": {"id": path, **body}})

        if path == "dashboard/stats":
            return httpx.Response(200, json={"data": DASHBOARD_STATS})
        if path.endswith("/stats"):
            return httpx.Response(200, json={"data": {"total": 3}})
        if path.endswith("/notes"):
            return httpx.Response(200, json={"data": []})
        if path in self.datasets or path in COLLECTIONS:
            items = self.datasets.get(path, [])
            return httpx.Response(200, json={
                "data": items,
                "pagination": {"page": 1, "limit": 10, "total": len(items), "totalPages": 1},
            })

        collection, _, item_id = path.rpartition("/")
        for record in self.datasets.get(collection, []):
            if record["id"] == item_id:
                return httpx.Response(200, json={"data": record})
        return httpx.Response(404, json={"message": "Not found"})


def _api_path(request: httpx.Request) -> str:
    return request.url.path.split("/api/", 1)[1]


class RecordingAuditWriter(AuditTrailWriter):
    """Audit writer that records events and writes them inline, not as tasks."""

    def __init__(self, base_path: str):
        super().__init__(base_path)
        self.events = []

    def fire_and_forget(self, event) -> None:
        self.events.append(event)
        self.write_sync(event)

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


def make_token(subject: str, role: str, secret: str = JWT_SECRET) -> str:
    return jwt.encode({"sub": subject, "role": role}, secret, algorithm="HS256")


def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


async def switch_role(client: httpx.AsyncClient, role: str) -> dict:
    r = await client.put("/api/session/role", json={"role": role})
    assert r.status_code == 200, r.text
    return r.json()


async def set_reduced_operations(client: httpx.AsyncClient, enabled: bool) -> dict:
    r = await client.put("/api/session/reduced-operations", json={"enabled": enabled})
    assert r.status_code == 200, r.text
    return r.json()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DOMAIN_API_BASE_URL=DOMAIN_API_URL,
        JWT_SECRET=JWT_SECRET,
        AUDIT_STORAGE_PATH=str(tmp_path / "audit"),
        ROLE_OVERRIDE_ENABLED=True,
    )


@pytest.fixture
def upstream():
    return FakeDomainApi()


@pytest.fixture
def audit_writer(settings):
    return RecordingAuditWriter(settings.AUDIT_STORAGE_PATH)


@pytest.fixture
def app(settings, upstream, audit_writer):
    return create_app(
        settings,
        transport=httpx.MockTransport(upstream.handler),
        audit_writer=audit_writer,
    )


@pytest.fixture
def store(app):
    return app.state.session_store


@pytest_asyncio.fixture
async def client(app):
    """Console client bound to one demo session."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url=BASE_URL,
        headers={SESSION_HEADER: DEMO_SESSION},
    ) as c:
        yield c
    await app.state.domain_api.aclose()
