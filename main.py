# ─────────────────────────────────────────────────────────────────
# main.py — Application Setup
#
# create_app() wires the long-lived pieces together once:
#
#   ConnectionRegistry  → one backing-store connection per tenant
#   GuestDatasetStore   → one demo dataset per guest session
#   SessionManager      → which of the two a session resolves to
#   HealthCheckEngine   → probes a tenant's servers
#   DeploymentManager   → simulated deployments + CI/CD status
#
# and starts the background loops (timer.py) for the lifetime of
# the app. Run with:  uvicorn main:app   or   python main.py
# ─────────────────────────────────────────────────────────────────

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from alerts import configure_logging
from config import Settings, get_settings
from database import open_mongo_connection
from errors import DashboardError
from guest import GuestDatasetStore
from health import HealthCheckEngine
from pipeline import DeploymentManager, PipelineState
from registry import ConnectionRegistry
from routes import auth, dashboard, servers
from routes.deps import set_session_cookie
from sessions import SessionManager
from timer import start_background_tasks, stop_background_tasks

logger = logging.getLogger("main")


def create_app(settings: Settings = None, connect=None, probe_transport=None) -> FastAPI:
    """
    connect(address) opens a tenant connection; defaults to MongoDB.
    probe_transport replaces the network for health probes (tests).
    """

    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    if connect is None:
        async def connect(address: str):
            return await open_mongo_connection(
                address,
                settings.STORE_CONNECT_TIMEOUT_SECONDS,
                settings.DEFAULT_DATABASE,
            )

    registry = ConnectionRegistry(
        connect,
        # ping + index setup each get the full timeout
        connect_timeout=settings.STORE_CONNECT_TIMEOUT_SECONDS * 2,
        ping_timeout=settings.STORE_CONNECT_TIMEOUT_SECONDS,
    )
    guests = GuestDatasetStore()
    sessions = SessionManager(
        registry,
        guests,
        idle_timeout=timedelta(minutes=settings.SESSION_IDLE_MINUTES),
    )
    engine = HealthCheckEngine(settings.PROBE_TIMEOUT_SECONDS, transport=probe_transport)
    pipeline = PipelineState()
    deployments = DeploymentManager(pipeline, settings.DEPLOY_DURATION_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tasks = start_background_tasks(registry, sessions, engine, settings)
        logger.info(f"{settings.APP_NAME} started")
        try:
            yield
        finally:
            await stop_background_tasks(tasks)
            await deployments.shutdown()
            await registry.close_all()
            logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Per-tenant server health and deployment dashboard",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.guests = guests
    app.state.sessions = sessions
    app.state.engine = engine
    app.state.pipeline = pipeline
    app.state.deployments = deployments

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail, "code": exc.code},
        )

    @app.middleware("http")
    async def refresh_session_cookie(request: Request, call_next):
        """
        Slides the browser cookie along with the server-side idle
        window: any response to a still-live session re-issues the
        cookie with a fresh Max-Age, unless the route already set it.
        """

        response = await call_next(request)

        session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
        session = sessions.get(session_id) if session_id else None
        if session is None or sessions.is_expired(session):
            return response

        cookie_prefix = f"{settings.SESSION_COOKIE_NAME}="
        if any(value.startswith(cookie_prefix) for value in response.headers.getlist("set-cookie")):
            return response

        set_session_cookie(response, settings, session_id)
        return response

    app.include_router(auth.router)
    app.include_router(dashboard.router)
    app.include_router(servers.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.PORT)
