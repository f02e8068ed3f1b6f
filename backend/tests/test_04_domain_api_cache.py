"""
Tests 401-440: Scoped read cache and the domain API client.

The client talks to ``FakeDomainApi`` through ``httpx.MockTransport``.
"""
import httpx
import pytest
import pytest_asyncio

from conftest import DOMAIN_API_URL, FakeDomainApi
from scn_console.services.cache import ScopedCache
from scn_console.services.domain_api import (
    NETWORK_ERROR_MESSAGE,
    AccessRevoked,
    DomainApiClient,
    UpstreamError,
    describe_http_error,
    normalize_page,
)
from scn_console.session import SessionContext, SessionStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestScopedCache:

    # =================================================================
    # Tests 401-410: Cache partitions and TTL
    # =================================================================

    def test_401_get_set(self):
        cache = ScopedCache()
        cache.set(("a",), ("donations", ()), [1, 2])
        assert cache.get(("a",), ("donations", ())) == [1, 2]
        assert len(cache) == 1

    def test_402_scopes_are_isolated(self):
        cache = ScopedCache()
        cache.set(("finance", "scn-hq"), "k", "hq-data")
        assert cache.get(("finance", "educare"), "k") is None
        assert cache.get(("donor", "scn-hq"), "k") is None

    def test_403_entries_expire(self):
        clock = FakeClock()
        cache = ScopedCache(ttl_seconds=60, clock=clock)
        cache.set(("s",), "k", "v")
        clock.now += 59
        assert cache.get(("s",), "k") == "v"
        clock.now += 1
        assert cache.get(("s",), "k") is None
        assert len(cache) == 0

    def test_404_zero_ttl_disables_caching(self):
        cache = ScopedCache(ttl_seconds=0)
        cache.set(("s",), "k", "v")
        assert cache.get(("s",), "k") is None

    def test_405_drop_scope(self):
        cache = ScopedCache()
        cache.set(("a",), "k1", 1)
        cache.set(("a",), "k2", 2)
        cache.set(("b",), "k1", 3)
        assert cache.drop_scope(("a",)) == 2
        assert cache.get(("b",), "k1") == 3

    def test_406_invalidate_prefix_across_scopes(self):
        cache = ScopedCache()
        cache.set(("a",), ("donations", ()), 1)
        cache.set(("b",), ("donations/stats", ()), 2)
        cache.set(("b",), ("volunteers", ()), 3)
        assert cache.invalidate_prefix("donations") == 2
        assert cache.get(("b",), ("volunteers", ())) == 3

    def test_407_clear(self):
        cache = ScopedCache()
        cache.set(("a",), "k", 1)
        cache.clear()
        assert len(cache) == 0


@pytest.fixture
def upstream():
    return FakeDomainApi()


@pytest_asyncio.fixture
async def api(upstream):
    client = DomainApiClient(DOMAIN_API_URL, transport=httpx.MockTransport(upstream.handler))
    yield client
    await client.aclose()


class TestDomainApiClient:

    # =================================================================
    # Tests 411-425: Requests, scoping and caching
    # =================================================================

    async def test_411_list_sends_scope_and_role(self, api, upstream):
        snapshot = SessionContext(role="finance", vertical="educare").snapshot()
        page = await api.list_items("donations", snapshot, filters={"search": "trust"})
        assert page["total"] == 3
        request = upstream.calls("donations")[0]
        assert request.url.params["vertical_id"] == "educare"
        assert request.url.params["start_date"] == "2024-01-01"
        assert request.url.params["end_date"] == "2024-01-16"
        assert request.url.params["search"] == "trust"
        assert request.headers["X-SCN-Role"] == "finance"

    async def test_412_reads_cached_per_scope(self, api, upstream):
        snapshot = SessionContext().snapshot()
        await api.list_items("donations", snapshot)
        await api.list_items("donations", snapshot)
        assert len(upstream.calls("donations")) == 1

    async def test_413_other_scope_refetches(self, api, upstream):
        ctx = SessionContext()
        await api.list_items("donations", ctx.snapshot())
        ctx.set_current_vertical("khuwaish")
        await api.list_items("donations", ctx.snapshot())
        assert len(upstream.calls("donations")) == 2

    async def test_414_scope_change_drops_previous_partition(self, api):
        store = SessionStore()
        store.add_listener(api.on_session_change)
        ctx = store.get_or_create("demo:x")
        old_scope = ctx.snapshot().scope_key
        await api.list_items("donations", ctx.snapshot())
        assert len(api.cache) == 1
        ctx.set_current_role("finance")
        assert api.cache.get(old_scope, ("donations", (("limit", 10), ("page", 1)))) is None
        assert len(api.cache) == 0

    async def test_415_reduced_ops_toggle_keeps_cache(self, api):
        store = SessionStore()
        store.add_listener(api.on_session_change)
        ctx = store.get_or_create("demo:y")
        await api.list_items("donations", ctx.snapshot())
        ctx.set_reduced_operations_mode(True)
        assert len(api.cache) == 1

    async def test_416_write_invalidates_collection(self, api, upstream):
        snapshot = SessionContext().snapshot()
        await api.list_items("donations", snapshot)
        await api.post_action("donations/don-1/allocate", snapshot, {"program_id": "p1"})
        await api.list_items("donations", snapshot)
        assert len(upstream.calls("donations")) == 2
        assert len(upstream.calls("donations/don-1/allocate", method="POST")) == 1

    async def test_417_get_item(self, api):
        record = await api.get_item("donations", "don-2", SessionContext().snapshot())
        assert record["data"]["donor_name"] == "Tata Trusts"

    async def test_418_get_stats_unwraps_data(self, api, upstream):
        stats = await api.get_stats("donations", SessionContext().snapshot())
        assert stats == {"total": 3}
        assert len(upstream.calls("donations/stats")) == 1

    async def test_419_scope_dropped_mid_fetch_is_not_refilled(self, api, upstream):
        snapshot = SessionContext().snapshot()

        def drop_then_answer(request):
            api.cache.drop_scope(snapshot.scope_key)
            return httpx.Response(200, json={"data": [], "pagination": {"total": 0}})

        upstream.respond("GET", "volunteers", handler=drop_then_answer)
        await api.list_items("volunteers", snapshot)
        assert len(api.cache) == 0
        await api.list_items("volunteers", snapshot)
        assert len(upstream.calls("volunteers")) == 2

    def test_420_generation_guard_on_cache(self):
        cache = ScopedCache()
        generation = cache.generation(("s",))
        cache.drop_scope(("s",))
        cache.set(("s",), "k", "stale", generation=generation)
        assert cache.get(("s",), "k") is None
        cache.set(("s",), "k", "fresh", generation=cache.generation(("s",)))
        assert cache.get(("s",), "k") == "fresh"

    # =================================================================
    # Tests 426-440: Error mapping
    # =================================================================

    async def test_426_401_raises_access_revoked(self, api, upstream):
        upstream.respond("GET", "donations", 401, {"message": "Token revoked"})
        with pytest.raises(AccessRevoked) as exc:
            await api.list_items("donations", SessionContext().snapshot())
        assert exc.value.status_code == 401
        assert exc.value.message == "Token revoked"

    async def test_427_403_raises_access_revoked(self, api, upstream):
        upstream.respond("GET", "audit", 403, {})
        with pytest.raises(AccessRevoked) as exc:
            await api.list_items("audit", SessionContext().snapshot())
        assert exc.value.message == "You do not have permission to access this resource."

    async def test_428_500_raises_upstream_error(self, api, upstream):
        upstream.respond("GET", "donations", 500, {})
        with pytest.raises(UpstreamError) as exc:
            await api.list_items("donations", SessionContext().snapshot())
        assert exc.value.status_code == 500
        assert exc.value.message == "Server error. Please try again later."

    async def test_429_errors_are_not_cached(self, api, upstream):
        snapshot = SessionContext().snapshot()
        upstream.respond("GET", "donations", 503, {})
        with pytest.raises(UpstreamError):
            await api.list_items("donations", snapshot)
        assert len(api.cache) == 0

    async def test_430_network_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = DomainApiClient(DOMAIN_API_URL, transport=httpx.MockTransport(refuse))
        try:
            with pytest.raises(UpstreamError) as exc:
                await client.get_json("dashboard/stats", SessionContext().snapshot())
            assert exc.value.message == NETWORK_ERROR_MESSAGE
            assert exc.value.status_code is None
        finally:
            await client.aclose()

    def test_431_describe_http_error(self):
        assert describe_http_error(404) == "Resource not found."
        assert describe_http_error(418) == "An unexpected error occurred."
        assert describe_http_error(400, {"message": "Amount must be positive"}) == "Amount must be positive"
        assert describe_http_error(422, {"details": {"amount": ["Must be positive"]}}) == "Must be positive"

    def test_432_normalize_page_shapes(self):
        upstream_shape = {
            "data": [{"id": 1}],
            "pagination": {"page": 2, "limit": 5, "total": 6, "totalPages": 2},
        }
        assert normalize_page(upstream_shape, 1, 10) == {
            "items": [{"id": 1}], "total": 6, "page": 2, "page_size": 5, "total_pages": 2,
        }
        assert normalize_page([{"id": 1}, {"id": 2}], 1, 10)["total"] == 2
        assert normalize_page(None, 1, 10)["items"] == []
        assert normalize_page({"items": [], "total": 0}, 3, 20)["page"] == 3
