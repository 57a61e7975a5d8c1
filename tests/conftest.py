import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from nomad_mcp_pack.schemas.registry import OFFICIAL_META_KEY
from nomad_mcp_pack.services.registry_service import RegistryClient

REGISTRY_URL = "http://registry.test"


def server_entry(
    name: str = "acme/widget",
    version: str = "1.0.0",
    status: str = "active",
    packages: Optional[List[Dict[str, Any]]] = None,
    updated_at: Optional[str] = "2025-01-01T00:00:00Z",
) -> Dict[str, Any]:
    """Build a registry list entry in the official envelope shape."""
    if packages is None:
        packages = [package_entry()]
    official: Dict[str, Any] = {"status": status}
    if updated_at is not None:
        official["updatedAt"] = updated_at
    return {
        "server": {
            "name": name,
            "description": f"{name} test server",
            "version": version,
            "packages": packages,
        },
        "_meta": {OFFICIAL_META_KEY: official},
    }


def updated_at(entry: Dict[str, Any]) -> Optional[datetime]:
    value = entry.get("_meta", {}).get(OFFICIAL_META_KEY, {}).get("updatedAt")
    return datetime.fromisoformat(value) if value else None


def package_entry(registry_type: str = "npm", transport: str = "stdio", identifier: str = "@acme/widget"):
    return {
        "registryType": registry_type,
        "identifier": identifier,
        "version": "1.0.0",
        "transport": {"type": transport},
    }


class StubRegistry:
    """
    In-memory stand-in for the registry's /v0/servers API.

    ``failures`` holds status codes (or exceptions) served, in order, before
    normal responses resume. Entries without an ``updatedAt`` always pass
    the ``updated_since`` filter. Every request is recorded in ``requests``.
    """

    def __init__(self, servers: Optional[List[Dict[str, Any]]] = None, page_size: int = 100):
        self.servers = list(servers or [])
        self.page_size = page_size
        self.failures: List[Any] = []
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure, text=f"stub failure {failure}")

        if request.url.path != "/v0/servers":
            return httpx.Response(404, json={"error": "not found"})

        params = request.url.params
        entries = self.servers
        search = params.get("search")
        if search:
            entries = [e for e in entries if search in e["server"]["name"]]
        updated_since = params.get("updated_since")
        if updated_since:
            since = datetime.fromisoformat(updated_since)
            entries = [e for e in entries if updated_at(e) is None or updated_at(e) >= since]

        start = int(params.get("cursor") or 0)
        end = start + self.page_size
        page = entries[start:end]
        next_cursor = str(end) if end < len(entries) else None
        return httpx.Response(
            200, json={"servers": page, "metadata": {"count": len(page), "nextCursor": next_cursor}}
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class TrackingGenerator:
    """Pack generator double that records calls and peak concurrency."""

    def __init__(self, delay: float = 0.01, errors: Optional[Dict[str, Exception]] = None):
        self.delay = delay
        self.errors = errors or {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, ctx, server, package, transport_type, options):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.calls.append(f"{server.name}@{server.version}:{package.registry_type}:{transport_type}")
            error = self.errors.get(server.name)
            if error is not None:
                raise error
        finally:
            self.in_flight -= 1


@pytest.fixture
def stub_registry():
    return StubRegistry([server_entry()])


@pytest_asyncio.fixture
async def registry_client(stub_registry):
    client = RegistryClient(REGISTRY_URL, retry_delay=0, transport=stub_registry.transport())
    yield client
    await client.aclose()


@pytest.fixture
def tracking_generator():
    return TrackingGenerator()


@pytest.fixture
def make_server():
    return server_entry


@pytest.fixture
def make_package():
    return package_entry


@pytest.fixture
def make_registry():
    return StubRegistry


@pytest.fixture
def make_generator():
    return TrackingGenerator


@pytest_asyncio.fixture
async def make_client():
    """Factory for clients bound to a StubRegistry or a raw handler; closes them at teardown."""
    clients = []

    def _make(registry: Optional[StubRegistry] = None, *, handler=None, **kwargs) -> RegistryClient:
        kwargs.setdefault("retry_delay", 0)
        transport = httpx.MockTransport(handler) if handler is not None else registry.transport()
        client = RegistryClient(REGISTRY_URL, transport=transport, **kwargs)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()
