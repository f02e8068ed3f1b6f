"""Client for the external SCN domain REST API.

Every call is made on behalf of a ``SessionSnapshot``: the snapshot's scope
(vertical and date window) is sent as query parameters, its role as the
``X-SCN-Role`` header, and reads are cached under the snapshot's
``scope_key``.

Upstream 401/403 responses mean the session's access was revoked and raise
``AccessRevoked``; every other failure raises ``UpstreamError`` carrying a
message fit for the user.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from scn_console.services.cache import ScopedCache
from scn_console.session import SessionChange, SessionSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class DomainApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "status": self.status_code}


class AccessRevoked(DomainApiError):
    """The domain API refused the session (401/403): re-evaluate it."""


class UpstreamError(DomainApiError):
    """Network failure or non-auth error status from the domain API."""


_STATUS_MESSAGES: dict[int, str] = {
    400: "Invalid request. Please check your input.",
    401: "Session expired. Please login again.",
    403: "You do not have permission to access this resource.",
    404: "Resource not found.",
    422: "Validation error. Please check your input.",
    500: "Server error. Please try again later.",
    503: "Service temporarily unavailable. Please try again later.",
}

NETWORK_ERROR_MESSAGE = "Unable to connect to server. Please check your connection."


def describe_http_error(status_code: int, payload: Any = None) -> str:
    """User-facing message for an error response.

    An explicit ``message`` from the API wins; 422 falls back to the first
    field error in ``details``.
    """
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
        if status_code == 422:
            details = payload.get("details")
            if isinstance(details, dict):
                for errors in details.values():
                    if isinstance(errors, list) and errors:
                        return str(errors[0])
    return _STATUS_MESSAGES.get(status_code, "An unexpected error occurred.")


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def normalize_page(payload: Any, page: int, limit: int) -> dict[str, Any]:
    """Coerce an upstream list response into ``items/total/page/page_size``.

    Accepts ``{"data": [...], "pagination": {...}}``, ``{"items": [...],
    "total": n}`` or a bare list.
    """
    if isinstance(payload, list):
        items, meta = payload, {}
    elif isinstance(payload, dict):
        items = payload.get("data", payload.get("items")) or []
        meta = payload.get("pagination") or payload
    else:
        items, meta = [], {}

    total = meta.get("total", len(items))
    page_size = meta.get("limit", meta.get("page_size", limit))
    total_pages = meta.get("totalPages", meta.get("total_pages"))
    if total_pages is None:
        total_pages = -(-total // page_size) if page_size else 0
    return {
        "items": list(items),
        "total": total,
        "page": meta.get("page", page),
        "page_size": page_size,
        "total_pages": total_pages,
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DomainApiClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        cache: ScopedCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache = cache if cache is not None else ScopedCache()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- session hooks ----

    def on_session_change(self, session_key: str, change: SessionChange) -> None:
        """``SessionStore`` listener: forget the data of a scope that was left."""
        if change.scope_changed:
            removed = self.cache.drop_scope(change.previous.scope_key)
            logger.info(
                "Session %s scope changed (%s); dropped %d cached reads",
                session_key, ", ".join(sorted(change.fields)), removed,
            )

    def forget(self, snapshot: SessionSnapshot) -> None:
        self.cache.drop_scope(snapshot.scope_key)

    # ---- transport ----

    async def _request(
        self,
        method: str,
        path: str,
        snapshot: SessionSnapshot,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        query = {**snapshot.scope_params(), **(params or {})}
        query = {k: v for k, v in query.items() if v is not None}
        headers = {"X-SCN-Role": snapshot.role.value}

        try:
            response = await self._client.request(
                method, path.lstrip("/"), params=query, json=json, headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Domain API %s %s failed: %s", method, path, exc)
            raise UpstreamError(NETWORK_ERROR_MESSAGE) from exc

        if response.status_code in (401, 403):
            payload = _safe_json(response)
            logger.warning(
                "Domain API revoked access for role %s on %s %s (%d)",
                snapshot.role.value, method, path, response.status_code,
            )
            raise AccessRevoked(
                describe_http_error(response.status_code, payload),
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            payload = _safe_json(response)
            logger.error("Domain API %s %s returned %d", method, path, response.status_code)
            raise UpstreamError(
                describe_http_error(response.status_code, payload),
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None
        return _safe_json(response)

    async def _cached_get(
        self,
        path: str,
        snapshot: SessionSnapshot,
        params: dict[str, Any] | None = None,
    ) -> Any:
        scope = snapshot.scope_key
        key = (path, tuple(sorted((params or {}).items())))
        cached = self.cache.get(scope, key)
        if cached is not None:
            return cached
        # A scope dropped while the request was in flight must not be refilled.
        generation = self.cache.generation(scope)
        data = await self._request("GET", path, snapshot, params=params)
        self.cache.set(scope, key, data, generation=generation)
        return data

    def _after_write(self, path: str) -> None:
        root = path.strip("/").split("/", 1)[0]
        self.cache.invalidate_prefix(root)

    # ---- reads ----

    async def list_items(
        self,
        path: str,
        snapshot: SessionSnapshot,
        filters: dict[str, Any] | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, Any]:
        params = {**(filters or {}), "page": page, "limit": limit}
        params = {k: v for k, v in params.items() if v is not None and v != ""}
        payload = await self._cached_get(path, snapshot, params)
        return normalize_page(payload, page, limit)

    async def get_item(self, path: str, item_id: str, snapshot: SessionSnapshot) -> Any:
        return await self._cached_get(f"{path.rstrip('/')}/{item_id}", snapshot)

    async def get_json(
        self,
        path: str,
        snapshot: SessionSnapshot,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._cached_get(path, snapshot, params)

    async def get_stats(self, entity: str, snapshot: SessionSnapshot) -> Any:
        """Summary figures for *entity* (``GET {entity}/stats``)."""
        payload = await self._cached_get(f"{entity.rstrip('/')}/stats", snapshot)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload

    # ---- writes ----

    async def create_item(self, path: str, snapshot: SessionSnapshot, body: dict[str, Any]) -> Any:
        data = await self._request("POST", path, snapshot, json=body)
        self._after_write(path)
        return data

    async def post_action(self, path: str, snapshot: SessionSnapshot, body: dict[str, Any] | None = None) -> Any:
        data = await self._request("POST", path, snapshot, json=body)
        self._after_write(path)
        return data

    async def put_action(self, path: str, snapshot: SessionSnapshot, body: dict[str, Any] | None = None) -> Any:
        data = await self._request("PUT", path, snapshot, json=body)
        self._after_write(path)
        return data
