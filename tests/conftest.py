"""
Shared fixtures: an in-memory stand-in for tenant database connections.
"""
import asyncio

import httpx
import pytest

from database import MemoryStore
from errors import StoreConnectionError
from guest import GuestDatasetStore
from registry import ConnectionRegistry
from sessions import SessionManager


VALID_BLOB = b"MONGO_URI=db://x\nAPI_KEY=k1\n"


class FakeConnection:
    """Connection handle backed by a MemoryStore with a switchable liveness flag"""

    def __init__(self, address):
        self.address = address
        self.alive = True
        self.closed = False
        self.store = MemoryStore()

    async def ping(self):
        return self.alive and not self.closed

    async def close(self):
        self.closed = True


class FakeConnector:
    """connect(address) replacement that records every connection it opens"""

    def __init__(self):
        self.created = []
        self.unreachable = set()
        self.delay = 0

    async def __call__(self, address):
        if self.delay:
            await asyncio.sleep(self.delay)
        if address in self.unreachable:
            raise StoreConnectionError()
        connection = FakeConnection(address)
        self.created.append(connection)
        return connection


def probe_handler(request: httpx.Request) -> httpx.Response:
    """Mock network: http://ok answers 200, anything else 503"""
    if request.url.host == "ok":
        return httpx.Response(200, text="ok")
    return httpx.Response(503)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def registry(connector):
    return ConnectionRegistry(connector, connect_timeout=1.0, ping_timeout=1.0)


@pytest.fixture
def guests():
    return GuestDatasetStore()


@pytest.fixture
def sessions(registry, guests):
    return SessionManager(registry, guests)


@pytest.fixture
def probe_transport():
    return httpx.MockTransport(probe_handler)
