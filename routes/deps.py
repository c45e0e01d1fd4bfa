# ─────────────────────────────────────────────────────────────────
# routes/deps.py — Shared Route Dependencies
#
# The long-lived objects (session manager, health engine, pipeline)
# are built once in main.create_app() and kept on app.state.
# These small helpers hand them to route functions via Depends().
# ─────────────────────────────────────────────────────────────────

from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.responses import RedirectResponse, Response

from sessions import SessionManager


def get_settings(request: Request):
    return request.app.state.settings


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_engine(request: Request):
    return request.app.state.engine


def get_deployments(request: Request):
    return request.app.state.deployments


def get_session_id(request: Request) -> Optional[str]:
    """The session identity from the session cookie, if any."""
    return request.cookies.get(request.app.state.settings.SESSION_COOKIE_NAME)


async def require_api_writer(
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    x_api_key: Optional[str] = Header(default=None),
):
    """
    Gate for tenant-write API routes: authenticated, not a guest,
    and X-API-Key matching the session's own access key.
    """
    await sessions.check_api_key(session_id, x_api_key)
    return session_id


def set_session_cookie(response: Response, settings, session_id: str):
    # Max-Age matches the idle window; it is renewed on every
    # authenticated request (see main.refresh_session_cookie)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        max_age=settings.SESSION_IDLE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )


def redirect(url: str) -> RedirectResponse:
    # 303 so browsers follow a POST with a GET
    return RedirectResponse(url, status_code=303)


def redirect_with_error(path: str, code: str) -> RedirectResponse:
    return redirect(f"{path}?error={code}")
