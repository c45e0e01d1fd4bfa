# ─────────────────────────────────────────────────────────────────
# registry.py — Tenant Connection Registry
#
# Every credentialed session gets its OWN connection to its own
# backing store. The registry caches those connections so repeated
# requests from the same session reuse one handle:
#
#   key   → session id + KEY_SEPARATOR + backing-store address
#   value → a live connection handle (see database.MongoConnection)
#
# Two sessions that upload the same address still get two entries:
# the session id is part of the key, so nothing is ever shared
# between tenants.
#
# A handle is anything with:
#   async ping()  -> bool   liveness check
#   async close()           release the connection
#
# Entries leave the registry in two ways:
#   release(session_id) → immediately, on logout
#   sweep()             → periodically, when ping() fails
# ─────────────────────────────────────────────────────────────────

import asyncio
import logging
from contextlib import asynccontextmanager

from credentials import redact_address
from errors import StoreConnectionError

logger = logging.getLogger("registry")

# NUL can't appear in a URL-safe session token or in a connection URI
KEY_SEPARATOR = "\x00"


def registry_key(session_id: str, address: str) -> str:
    if KEY_SEPARATOR in session_id or KEY_SEPARATOR in address:
        raise ValueError("Session id and address must not contain NUL")
    return f"{session_id}{KEY_SEPARATOR}{address}"


def split_key(key: str):
    session_id, _, address = key.partition(KEY_SEPARATOR)
    return session_id, address


class _KeySlot:
    """Per-key mutex plus the number of coroutines using it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class ConnectionRegistry:
    """
    Caches one live connection per (session, address).

    connect(address) must return a connected handle or raise; it is
    called at most once at a time per key (single-flight), so two
    requests racing for the same session share one connection.

    All changes to the entry map for a key happen while holding that
    key's lock, and the sweep takes the same lock before closing a
    handle, so a request can never be handed a handle the sweep is
    closing.
    """

    def __init__(self, connect, connect_timeout: float = 5.0, ping_timeout: float = 5.0):
        self._connect = connect
        self._connect_timeout = connect_timeout
        self._ping_timeout = ping_timeout
        self._entries = {}
        self._slots = {}
        self.created_count = 0

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    def keys_for(self, session_id: str) -> list:
        # includes keys with a connect still in flight
        keys = set(self._entries) | set(self._slots)
        return sorted(key for key in keys if split_key(key)[0] == session_id)

    # ─────────────────────────────────────────────────────────────
    # Per-key locking
    # ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _guard(self, key: str):
        # no await between lookup and insert, so the slot is shared by
        # every coroutine that arrives while it exists
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _KeySlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    # ─────────────────────────────────────────────────────────────
    # Liveness and eviction
    # ─────────────────────────────────────────────────────────────

    async def _is_alive(self, handle) -> bool:
        try:
            return bool(await asyncio.wait_for(handle.ping(), self._ping_timeout))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug(f"Liveness check raised {type(exc).__name__}")
            return False

    async def _evict(self, key: str):
        """Remove and close the entry for key. Caller holds the key guard."""

        handle = self._entries.pop(key, None)
        if handle is None:
            return False
        try:
            await handle.close()
        except Exception as exc:
            logger.warning(f"Error closing connection for a session: {type(exc).__name__}")
        return True

    # ─────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────

    async def acquire(self, session_id: str, address: str):
        """
        Returns a live handle for (session_id, address).

        - cached and alive   → the same handle, nothing created
        - missing or dead    → stale entry closed, new one connected
        - connect fails      → StoreConnectionError, nothing cached
        """

        key = registry_key(session_id, address)

        async with self._guard(key):
            handle = self._entries.get(key)
            if handle is not None:
                if await self._is_alive(handle):
                    return handle
                logger.info("Cached connection failed liveness check, reconnecting")
                await self._evict(key)

            try:
                handle = await asyncio.wait_for(self._connect(address), self._connect_timeout)
            except asyncio.CancelledError:
                raise
            except StoreConnectionError:
                raise
            except Exception as exc:
                logger.warning(
                    f"Could not connect to {redact_address(address)}: {type(exc).__name__}"
                )
                raise StoreConnectionError() from exc

            self._entries[key] = handle
            self.created_count += 1
            logger.info(f"Opened tenant connection to {redact_address(address)} ({len(self._entries)} cached)")
            return handle

    async def release(self, session_id: str, keep_address: str = None) -> int:
        """
        Closes and removes every entry belonging to session_id, whatever
        its address. keep_address spares one entry (used when a session
        re-uploads credentials and has already connected to the new
        address). Safe to call when the session has no entries.
        """

        keep = registry_key(session_id, keep_address) if keep_address is not None else None
        released = 0
        for key in self.keys_for(session_id):
            if key == keep:
                continue
            async with self._guard(key):
                if await self._evict(key):
                    released += 1

        if released:
            logger.info(f"Released {released} connection(s) for a session ({len(self._entries)} cached)")
        return released

    async def sweep(self) -> int:
        """
        Closes and removes every entry whose handle fails its liveness
        check. One failing entry never stops the rest of the sweep.
        """

        evicted = 0
        for key in list(self._entries):
            try:
                async with self._guard(key):
                    handle = self._entries.get(key)
                    if handle is None or await self._is_alive(handle):
                        continue
                    await self._evict(key)
                    evicted += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Registry sweep failed for one entry, continuing")

        if evicted:
            logger.info(f"🧹 Registry sweep evicted {evicted} dead connection(s)")
        return evicted

    async def close_all(self):
        """Shutdown: close every cached connection."""

        for key in list(self._entries):
            async with self._guard(key):
                await self._evict(key)
