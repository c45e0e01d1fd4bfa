# ─────────────────────────────────────────────────────────────────
# sessions.py — Session Context Manager
#
# Binds each browser session to exactly one way of reaching data:
#
#   Mode.CREDENTIALED → the tenant's own backing store, through a
#                       connection cached in the ConnectionRegistry
#   Mode.GUEST        → the session's private demo dataset in the
#                       GuestDatasetStore
#
# A session id with no record here is unauthenticated and gets no
# data access at all. Routes never branch on the mode themselves:
# they call data_access() and get back a TenantStore either way.
#
# Records live only in this process. A record idle for longer than
# the inactivity window is treated as logged out on next use, and
# the idle reaper in timer.py cleans up the ones nobody comes back to.
# ─────────────────────────────────────────────────────────────────

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from credentials import load_bundle, validate_bundle
from errors import GuestModeForbidden, InvalidApiKeyError, Unauthenticated
from models import CredentialBundle, Mode

logger = logging.getLogger("sessions")

DEFAULT_IDLE_TIMEOUT = timedelta(minutes=30)

# Guest sessions carry these shared defaults, never tenant values
GUEST_BUNDLE = CredentialBundle(mongo_uri="memory://guest", api_key="guest")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """An unguessable, URL-safe session identity."""
    return secrets.token_urlsafe(32)


@dataclass
class Session:
    session_id: str
    mode: Mode
    bundle: CredentialBundle
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.mode is Mode.GUEST and self.bundle is not GUEST_BUNDLE:
            raise ValueError("Guest sessions must use the guest defaults")
        if self.mode is Mode.CREDENTIALED and (self.bundle is None or self.bundle is GUEST_BUNDLE):
            raise ValueError("Credentialed sessions need a tenant bundle")


class SessionManager:
    """
    Owns every session record and the two cleanup paths behind them.

    registry → ConnectionRegistry for credentialed sessions
    guests   → GuestDatasetStore for guest sessions
    """

    def __init__(self, registry, guests, idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT, clock=utcnow):
        self.registry = registry
        self.guests = guests
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions = {}

    def __len__(self):
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        """The raw record, expired or not. Mostly for inspection and tests."""
        return self._sessions.get(session_id)

    def is_expired(self, session: Session) -> bool:
        return self._clock() - session.last_active_at > self.idle_timeout

    # ─────────────────────────────────────────────────────────────
    # Activation
    # ─────────────────────────────────────────────────────────────

    async def activate_credentialed(self, session_id: str, bundle) -> Session:
        """
        Attaches a tenant bundle to the session.

        bundle may be raw upload bytes, a parsed {KEY: value} dict or
        a CredentialBundle. The backing store is connected eagerly; the
        session record only changes once that has succeeded. On any
        failure the classified error propagates and the previous state
        of the session (usually: none) is kept.

        Re-uploading on a live session behaves like logout + activate:
        connections to any previous address and any guest dataset are
        dropped once the new connection is up.
        """

        if isinstance(bundle, (bytes, bytearray)):
            bundle = load_bundle(bytes(bundle))
        elif isinstance(bundle, dict):
            bundle = validate_bundle(bundle)
        elif not isinstance(bundle, CredentialBundle):
            raise TypeError(f"Unsupported bundle type: {type(bundle).__name__}")

        await self._drop_if_expired(session_id)

        # raises StoreConnectionError without caching anything
        await self.registry.acquire(session_id, bundle.mongo_uri)

        await self.registry.release(session_id, keep_address=bundle.mongo_uri)
        await self.guests.discard(session_id)

        session = Session(session_id=session_id, mode=Mode.CREDENTIALED, bundle=bundle)
        self._sessions[session_id] = session
        logger.info(f"✅ Session activated in credentialed mode ({len(self._sessions)} active)")
        return session

    async def activate_guest(self, session_id: str) -> Session:
        """Switches the session to guest mode with its own demo dataset."""

        await self._drop_if_expired(session_id)
        await self.registry.release(session_id)
        await self.guests.get(session_id)

        session = Session(session_id=session_id, mode=Mode.GUEST, bundle=GUEST_BUNDLE)
        self._sessions[session_id] = session
        logger.info(f"Session activated in guest mode ({len(self._sessions)} active)")
        return session

    # ─────────────────────────────────────────────────────────────
    # Gate and data access
    # ─────────────────────────────────────────────────────────────

    async def authenticate(self, session_id: Optional[str], touch: bool = True) -> Session:
        """
        Returns the live session record or raises Unauthenticated.
        An idle-expired record is logged out on the spot.
        """

        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            raise Unauthenticated()

        if self.is_expired(session):
            logger.info("Session expired after inactivity, logging out")
            await self.logout(session_id)
            raise Unauthenticated()

        if touch:
            session.last_active_at = self._clock()
        return session

    async def require_authenticated(self, session_id: Optional[str]) -> Mode:
        """The gate every protected operation calls first."""
        session = await self.authenticate(session_id)
        return session.mode

    async def data_access(self, session_id: Optional[str], write: bool = False, touch: bool = True):
        """
        Resolves the session to its TenantStore.

        write=True marks a tenant-write operation (add/remove server,
        deploy, clear logs); guest sessions are refused with
        GuestModeForbidden before any store is touched.
        """

        session = await self.authenticate(session_id, touch=touch)

        if session.mode is Mode.GUEST:
            if write:
                raise GuestModeForbidden()
            return await self.guests.get(session_id)

        handle = await self.registry.acquire(session_id, session.bundle.mongo_uri)
        return handle.store

    async def check_api_key(self, session_id: Optional[str], supplied: Optional[str]):
        """
        Per-tenant replacement for a global API key: the X-API-Key
        header must match the access key of the session's own bundle.
        """

        session = await self.authenticate(session_id)
        if session.mode is Mode.GUEST:
            raise GuestModeForbidden()
        if not supplied or not secrets.compare_digest(supplied.encode(), session.bundle.api_key.encode()):
            raise InvalidApiKeyError()

    # ─────────────────────────────────────────────────────────────
    # Teardown
    # ─────────────────────────────────────────────────────────────

    async def logout(self, session_id: Optional[str]):
        """
        Releases every resource the session may hold and forgets it.
        Both cleanups always run, whatever the recorded mode; calling
        this twice is harmless.
        """

        if not session_id:
            return
        try:
            await self.registry.release(session_id)
        finally:
            await self.guests.discard(session_id)
            if self._sessions.pop(session_id, None) is not None:
                logger.info(f"Session logged out ({len(self._sessions)} active)")

    async def _drop_if_expired(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is not None and self.is_expired(session):
            await self.logout(session_id)

    async def expire_idle(self) -> int:
        """Logs out every session past the inactivity window."""

        expired = [sid for sid, session in list(self._sessions.items()) if self.is_expired(session)]
        for session_id in expired:
            try:
                await self.logout(session_id)
            except Exception:
                logger.exception("Failed to clean up an expired session, continuing")
        if expired:
            logger.info(f"Expired {len(expired)} idle session(s)")
        return len(expired)

    def active_sessions(self, mode: Mode = None) -> list:
        """Snapshot of non-expired sessions, optionally filtered by mode."""
        return [
            session
            for session in list(self._sessions.values())
            if not self.is_expired(session) and (mode is None or session.mode is mode)
        ]
