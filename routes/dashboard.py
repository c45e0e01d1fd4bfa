# ─────────────────────────────────────────────────────────────────
# routes/dashboard.py — Dashboard, Status and Log Clearing
#
# GET /dashboard returns the view model a page template would
# render: mode, CI/CD status, fresh health results, and the
# tenant's servers, logs and deployments (newest first).
#
# Browser routes redirect on failure; GET /status is an API route
# and answers with JSON errors instead.
# ─────────────────────────────────────────────────────────────────

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from errors import DashboardError, Unauthenticated
from routes.deps import (
    get_engine,
    get_session_id,
    get_sessions,
    redirect,
    redirect_with_error,
)
from sessions import SessionManager

logger = logging.getLogger("routes")

router = APIRouter(tags=["Dashboard"])


# ─────────────────────────────────────────────────────────────────
# GET /dashboard
# ─────────────────────────────────────────────────────────────────

@router.get("/dashboard")
async def dashboard(
    request: Request,
    url: Optional[str] = None,
    error: Optional[str] = None,
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    engine=Depends(get_engine),
):
    try:
        session = await sessions.authenticate(session_id)
        server_health = await engine.run_for_session(sessions, session_id, touch=False)
        store = await sessions.data_access(session_id, touch=False)
        servers = await store.list_servers()
        logs = await store.list_logs()
        deployments = await store.list_deployments()
    except Unauthenticated as exc:
        return redirect_with_error("/", exc.code)
    except DashboardError as exc:
        logger.warning(f"Dashboard unavailable: {exc.code}")
        return redirect_with_error("/", exc.code)

    # ad-hoc check of any url typed into the dashboard
    url_status = "Unknown"
    if url:
        url_status = (await engine.probe_url(url)).status.value

    return {
        "mode": session.mode.value,
        "url": url or "N/A",
        "urlStatus": url_status,
        "pipelineStatus": request.app.state.pipeline.status,
        "serverHealth": server_health,
        "servers": servers,
        "logs": logs,
        "deployments": deployments,
        "error": error,
    }


# ─────────────────────────────────────────────────────────────────
# POST /logs_delete — Clear the tenant's health log
# ─────────────────────────────────────────────────────────────────

@router.post("/logs_delete")
async def logs_delete(
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
):
    try:
        store = await sessions.data_access(session_id, write=True)
        removed = await store.clear_logs()
    except Unauthenticated as exc:
        return redirect_with_error("/", exc.code)
    except DashboardError as exc:
        return redirect_with_error("/dashboard", exc.code)

    logger.info(f"Cleared {removed} health log entries")
    return redirect("/dashboard")


# ─────────────────────────────────────────────────────────────────
# GET /status — CI/CD and server health as JSON
# ─────────────────────────────────────────────────────────────────

@router.get("/status")
async def status(
    request: Request,
    session_id: Optional[str] = Depends(get_session_id),
    sessions: SessionManager = Depends(get_sessions),
    engine=Depends(get_engine),
):
    server_health = await engine.run_for_session(sessions, session_id)
    return {
        "CI/CD Status": request.app.state.pipeline.status,
        "Server Health": server_health,
    }
