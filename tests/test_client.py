"""Tests for the cloud HTTP client"""

import json

import httpx
import pytest

from posterm.common.exceptions import AuthError, NetworkError
from posterm.common.models import MutationRecord, MutationType, OutletContext
from posterm.services.sync.client import CloudClient, build_snapshot

CONTEXT = OutletContext(tenant_id="t1", outlet_id="o1")


def make_client(handler) -> CloudClient:
    return CloudClient("https://pos.example.com/", transport=httpx.MockTransport(handler))


def trpc(data):
    return {"result": {"data": {"json": data}}}


@pytest.mark.asyncio
async def test_push_posts_payload_with_idempotency_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=trpc({"ok": True}))

    client = make_client(handler)
    record = MutationRecord(
        id="m-1", type=MutationType.CREATE_ORDER, payload={"total": 5}, created_at=0.0
    )

    await client.push_mutation(record, "tok")
    await client.close()

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/trpc/pos.syncSales"
    assert request.headers["Idempotency-Key"] == "m-1"
    assert request.headers["Authorization"] == "Bearer tok"
    assert json.loads(request.content) == {"json": {"total": 5}}


@pytest.mark.asyncio
async def test_401_maps_to_auth_error():
    client = make_client(lambda request: httpx.Response(401))
    record = MutationRecord(id="m-1", type=MutationType.END_SHIFT, payload={}, created_at=0.0)

    with pytest.raises(AuthError):
        await client.push_mutation(record, "tok")


@pytest.mark.asyncio
async def test_server_error_maps_to_network_error():
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    record = MutationRecord(id="m-1", type=MutationType.CLOSE_DAY, payload={}, created_at=0.0)

    with pytest.raises(NetworkError) as exc_info:
        await client.push_mutation(record, "tok")
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_failure_maps_to_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(NetworkError):
        await client.check_sync(CONTEXT, 1, "tok")


@pytest.mark.asyncio
async def test_timeout_maps_to_network_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = make_client(handler)
    with pytest.raises(NetworkError, match="timeout"):
        await client.fetch_menu(CONTEXT, "tok", cached_at=0.0)


@pytest.mark.asyncio
async def test_check_sync_sends_version_and_reads_flag():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=trpc({"hasChanges": True}))

    client = make_client(handler)

    assert await client.check_sync(CONTEXT, 3, "tok") is True
    sent = json.loads(seen[0].url.params["input"])
    assert sent == {"json": {"productsVersion": 3}}
    assert seen[0].headers["X-Outlet-Id"] == "o1"


@pytest.mark.asyncio
async def test_check_sync_accepts_plain_data_envelope():
    client = make_client(lambda request: httpx.Response(200, json={"result": {"data": {"hasChanges": False}}}))
    assert await client.check_sync(CONTEXT, 3, "tok") is False


@pytest.mark.asyncio
async def test_fetch_menu_builds_snapshot():
    products = [
        {"id": "p1", "version": 2, "category": {"id": "c2", "name": "Drinks"}},
        {"id": "p2", "version": 5, "category": {"id": "c1", "name": "Burgers"}},
        {"id": "p3", "version": 1, "category": {"id": "c2", "name": "Drinks"}},
    ]
    body = trpc({"data": products, "outlet": {"id": "o1", "name": "Main"}})
    client = make_client(lambda request: httpx.Response(200, json=body))

    snapshot = await client.fetch_menu(CONTEXT, "tok", cached_at=42.0)

    assert snapshot.version == 5
    assert [c["name"] for c in snapshot.categories] == ["Burgers", "Drinks"]
    assert snapshot.metadata == {"outlet": {"id": "o1", "name": "Main"}}
    assert snapshot.cached_at == 42.0


@pytest.mark.asyncio
async def test_fetch_customers_unwraps_batch():
    body = [trpc([{"id": "c1"}])]
    client = make_client(lambda request: httpx.Response(200, json=body))

    assert await client.fetch_customers(CONTEXT, "tok") == [{"id": "c1"}]


@pytest.mark.asyncio
async def test_fetch_customers_rejects_malformed_body():
    client = make_client(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(NetworkError):
        await client.fetch_customers(CONTEXT, "tok")


@pytest.mark.asyncio
async def test_fetch_open_tables():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=trpc([{"id": "t4", "status": "open"}]))

    client = make_client(handler)

    assert await client.fetch_open_tables(CONTEXT, "tok") == [{"id": "t4", "status": "open"}]
    assert seen[0].url.path == "/api/trpc/pos.getOpenTables"
    assert seen[0].headers["Authorization"] == "Bearer tok"

    malformed = make_client(lambda request: httpx.Response(200, json=trpc({"tables": []})))
    with pytest.raises(NetworkError):
        await malformed.fetch_open_tables(CONTEXT, "tok")


@pytest.mark.asyncio
async def test_probe_never_raises():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert await make_client(handler).probe("/api/health") is False
    assert await make_client(lambda request: httpx.Response(404)).probe("/api/health") is True
    assert await make_client(lambda request: httpx.Response(503)).probe("/api/health") is False


def test_build_snapshot_from_bare_list():
    snapshot = build_snapshot([{"id": "p1"}], cached_at=1.0)
    assert snapshot.version == 0
    assert snapshot.metadata == {}
    assert snapshot.categories == []
