# ─────────────────────────────────────────────────────────────────
# health.py — Health Check Engine
#
# Probes every registered server of ONE tenant and records the
# result in that tenant's store:
#
#   1. list the tenant's servers
#   2. GET each url concurrently (bounded timeout)
#   3. classify each outcome as Up / Down with a reason
#   4. save each server's new status
#   5. append one log entry holding the whole status map
#
# A probe failure only marks that one server Down. A store failure
# is logged and the statuses gathered so far are returned: a health
# check never takes the serving path down with it.
#
# Guest datasets are demo data: their statuses are reported as
# seeded and nothing is probed or written.
# ─────────────────────────────────────────────────────────────────

import asyncio
import errno
import logging

import httpx

from alerts import notify_status_change
from errors import StoreConnectionError
from models import HealthResult, Mode, ServerStatus

logger = logging.getLogger("health")

SUCCESS_REASON = "OK 200"
GUEST_REASON = "Demo data"
DEFAULT_FAILURE_REASON = "Connection failed"


def _error_code(exc: BaseException):
    """ECONNREFUSED-style code from anywhere in the exception chain."""

    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (httpx.TimeoutException, asyncio.TimeoutError)):
            return "ETIMEDOUT"
        if isinstance(current, OSError) and current.errno in errno.errorcode:
            return errno.errorcode[current.errno]
        current = current.__cause__ or current.__context__
    return None


def classify_failure(exc: BaseException) -> str:
    """
    Reason for a Down result, in order of preference:
      remote status  → "HTTP 503 Service Unavailable"
      error code     → "ECONNREFUSED", "ETIMEDOUT", ...
      message        → str(exc)
    """

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return f"HTTP {response.status_code} {response.reason_phrase}".strip()

    code = _error_code(exc)
    if code:
        return code

    return str(exc) or DEFAULT_FAILURE_REASON


class HealthCheckEngine:
    """
    transport lets tests swap the network for httpx.MockTransport.
    """

    def __init__(self, probe_timeout: float = 3.0, transport: httpx.AsyncBaseTransport = None):
        self.probe_timeout = probe_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.probe_timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def _probe(self, client: httpx.AsyncClient, url: str) -> HealthResult:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except Exception as exc:
            return HealthResult(status=ServerStatus.DOWN, reason=classify_failure(exc))
        return HealthResult(status=ServerStatus.UP, reason=SUCCESS_REASON)

    async def probe_url(self, url: str) -> HealthResult:
        """One-off probe of an arbitrary url (the dashboard's ?url= box)."""
        async with self._client() as client:
            return await self._probe(client, url)

    async def run(self, store, mode: Mode) -> dict:
        """
        Returns {server name: {"status": "Up"|"Down", "reason": str}}.
        """

        if mode is Mode.GUEST:
            return await self._guest_statuses(store)

        statuses = {}
        try:
            servers = await store.list_servers()

            async with self._client() as client:
                results = await asyncio.gather(
                    *(self._probe(client, server["url"]) for server in servers)
                )

            for server, result in zip(servers, results):
                statuses[server["name"]] = result.model_dump(mode="json")

            for server, result in zip(servers, results):
                previous = server.get("status")
                if previous in (ServerStatus.UP.value, ServerStatus.DOWN.value) and previous != result.status.value:
                    notify_status_change(server["name"], previous, result.status.value, result.reason)
                await store.set_server_status(server["name"], result.status.value)

            await store.append_log(statuses)

        except Exception:
            logger.exception("Error checking server health")

        return statuses

    async def _guest_statuses(self, store) -> dict:
        servers = await store.list_servers()
        logs = await store.list_logs()
        latest = logs[0]["statuses"] if logs else {}

        statuses = {}
        for server in servers:
            reason = latest.get(server["name"], {}).get("reason", GUEST_REASON)
            statuses[server["name"]] = {"status": server["status"], "reason": reason}
        return statuses

    async def run_for_session(self, sessions, session_id: str, touch: bool = True) -> dict:
        """
        Resolves the session's store and runs a check against it.

        Unauthenticated propagates (the caller must redirect);
        an unreachable store yields an empty result.
        """

        session = await sessions.authenticate(session_id, touch=touch)
        try:
            store = await sessions.data_access(session_id, touch=False)
        except StoreConnectionError:
            logger.warning("Health check skipped: tenant store unreachable")
            return {}
        return await self.run(store, session.mode)
