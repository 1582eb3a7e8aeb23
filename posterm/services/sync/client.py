"""
Cloud Client

HTTP access to the remote system of record (tRPC-style endpoints).

Error mapping:
- 2xx -> success
- 401 -> AuthError (pause, do not retry against a bad credential)
- any other status, timeout, transport failure -> NetworkError (retryable)
"""

import json
from typing import Any

import httpx

from ...common.exceptions import AuthError, NetworkError
from ...common.logging_setup import get_service_logger
from ...common.models import MutationRecord, MutationType, OutletContext, ReferenceSnapshot

logger = get_service_logger("sync.client")

MUTATION_ENDPOINTS: dict[MutationType, str] = {
    MutationType.CREATE_ORDER: "/api/trpc/pos.syncSales",
    MutationType.UPDATE_TABLE: "/api/trpc/pos.addItemsToTable",
    MutationType.CLOSE_TABLE: "/api/trpc/pos.closeTable",
    MutationType.START_SHIFT: "/api/trpc/pos.startShift",
    MutationType.END_SHIFT: "/api/trpc/pos.endShift",
    MutationType.STOCK_MOVE: "/api/trpc/pos.stockMove",
    MutationType.CLOSE_DAY: "/api/trpc/pos.closeDay",
}

CHECK_SYNC_PATH = "/api/trpc/pos.checkSync"
PRODUCTS_PATH = "/api/trpc/pos.getProducts"
CUSTOMERS_PATH = "/api/trpc/pos.getCustomers"
OPEN_TABLES_PATH = "/api/trpc/pos.getOpenTables"


def _unwrap(body: Any) -> Any:
    """Strip the tRPC/SuperJSON envelope: result.data.json or result.data"""
    if not isinstance(body, dict):
        return None
    data = (body.get("result") or {}).get("data")
    if isinstance(data, dict) and "json" in data:
        return data["json"]
    return data


def build_snapshot(result: Any, cached_at: float) -> ReferenceSnapshot:
    """
    Build a menu snapshot from a getProducts result.

    - Categories are the distinct product categories, sorted by name
    - Version is the highest product version
    - Outlet details are kept as snapshot metadata
    """
    if isinstance(result, list):
        products, outlet = result, None
    elif isinstance(result, dict):
        products, outlet = result.get("data") or [], result.get("outlet")
    else:
        raise NetworkError("Malformed products response", operation="fetch_menu")

    categories: dict[Any, dict] = {}
    for product in products:
        category = product.get("category")
        if category and category.get("id") is not None:
            categories[category["id"]] = {"id": category["id"], "name": category.get("name", "")}

    version = max((int(p.get("version") or 0) for p in products), default=0)

    return ReferenceSnapshot(
        items=products,
        categories=sorted(categories.values(), key=lambda c: c["name"]),
        metadata={"outlet": outlet} if outlet else {},
        version=version,
        cached_at=cached_at,
    )


class CloudClient:
    """
    Remote endpoints used by the sync engine.

    Reuses a single httpx.AsyncClient; per-request timeout comes from
    config and a timeout is reported as a NetworkError.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport
        # Reusable HTTP client - avoids connection overhead per request
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self, token: str, context: OutletContext | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if context:
            headers["X-Tenant-Id"] = context.tenant_id
            headers["X-Outlet-Id"] = context.outlet_id
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException:
            raise NetworkError("Request timeout", operation=operation)
        except httpx.HTTPError as e:
            raise NetworkError(f"{e.__class__.__name__}: {e}", operation=operation)

        if response.status_code == 401:
            raise AuthError(operation=operation)

        if not response.is_success:
            raise NetworkError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                operation=operation,
                status_code=response.status_code,
            )

        return response

    def _json(self, response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise NetworkError("Invalid JSON response from server", operation=operation)

    # ============================================
    # WRITES
    # ============================================

    async def push_mutation(self, record: MutationRecord, token: str) -> None:
        """
        Submit one mutation.

        The mutation id travels as an idempotency key so a retry after a
        lost response does not apply the write twice.
        """
        endpoint = MUTATION_ENDPOINTS.get(record.type)
        if endpoint is None:
            raise NetworkError(f"Unknown operation type: {record.type}", operation="push")

        headers = self._headers(token)
        headers["Idempotency-Key"] = record.id

        await self._request(
            "push",
            "POST",
            endpoint,
            headers,
            json={"json": record.payload},
        )

    # ============================================
    # READS
    # ============================================

    async def check_sync(self, context: OutletContext, current_version: int, token: str) -> bool:
        """Ask whether reference data changed since current_version"""
        response = await self._request(
            "check_sync",
            "GET",
            CHECK_SYNC_PATH,
            self._headers(token, context),
            params={"input": json.dumps({"json": {"productsVersion": current_version}})},
        )
        result = _unwrap(self._json(response, "check_sync")) or {}
        return bool(result.get("hasChanges"))

    async def fetch_menu(self, context: OutletContext, token: str, cached_at: float) -> ReferenceSnapshot:
        """Fetch the full menu snapshot"""
        response = await self._request(
            "fetch_menu",
            "GET",
            PRODUCTS_PATH,
            self._headers(token, context),
            params={"input": "{}"},
        )
        result = _unwrap(self._json(response, "fetch_menu"))
        if result is None:
            raise NetworkError("Failed to fetch menu from server", operation="fetch_menu")

        snapshot = build_snapshot(result, cached_at)
        logger.info(
            f"Fetched {len(snapshot.items)} products, version {snapshot.version}",
            extra={"outlet_id": context.outlet_id, "version": snapshot.version},
        )
        return snapshot

    async def fetch_customers(self, context: OutletContext, token: str) -> list[dict]:
        """Fetch the customer directory (batched tRPC call)"""
        response = await self._request(
            "fetch_customers",
            "GET",
            CUSTOMERS_PATH,
            self._headers(token, context),
            params={"batch": "1", "input": json.dumps({"0": {"json": None}})},
        )
        envelope = self._json(response, "fetch_customers")
        first = envelope[0] if isinstance(envelope, list) and envelope else None
        customers = _unwrap(first)
        if not isinstance(customers, list):
            raise NetworkError("Malformed customers response", operation="fetch_customers")
        return customers

    async def fetch_open_tables(self, context: OutletContext, token: str) -> list[dict]:
        """Fetch tables that currently have an open order"""
        response = await self._request(
            "fetch_open_tables",
            "GET",
            OPEN_TABLES_PATH,
            self._headers(token, context),
        )
        tables = _unwrap(self._json(response, "fetch_open_tables"))
        if not isinstance(tables, list):
            raise NetworkError("Malformed open tables response", operation="fetch_open_tables")
        return tables

    async def probe(self, path: str) -> bool:
        """Lightweight reachability probe; never raises"""
        try:
            client = await self._get_client()
            response = await client.get(path, timeout=min(self.timeout_s, 5.0))
            return response.status_code < 500
        except httpx.HTTPError:
            return False
