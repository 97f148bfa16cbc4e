"""
TuneBridge server (FastAPI + Uvicorn)

Goals
- Hold vendor app credentials in memory and hand the browser only short-lived bearer tokens.
- One app per vendor (apple | spotify | youtube), same /api/credentials surface on each.
- Errors are JSON: {"error": "..."} with the status carried by the exception class.
- Spotify token endpoints only answer to our own origins.
- Apple sessions are swept on a timer while the server runs.

Notes
- Credentials are never persisted; a restart means configuring again.
- `create_app(vendor, state)` is what tests use; `app` is the default for uvicorn.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from tunebridge import settings
from tunebridge.api import apple, credentials, spotify, youtube
from tunebridge.api.state import ServerState, build_state
from tunebridge.auth.origins import is_allowed_origin
from tunebridge.auth.sessions import SessionManager
from tunebridge.errors import OriginForbidden, TuneBridgeError
from tunebridge.models.schemas import HealthResponse

VERSION = "0.3.0"

VENDOR_ROUTERS: Dict[str, List[APIRouter]] = {
    "apple": [credentials.router, apple.router],
    "spotify": [credentials.router, spotify.router],
    "youtube": [credentials.router, youtube.router],
}


# --------------- Background sweep ---------


async def _cleanup_loop(sessions: SessionManager, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            sessions.cleanup_sessions()
        except Exception:  # noqa: BLE001
            # A failed sweep just waits for the next tick
            logger.exception("Session cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    state: ServerState = app.state.bridge
    logger.info("TuneBridge ({}) startup; logs at {}", state.vendor, settings.LOG_DIR)

    task: Optional[asyncio.Task] = None
    if state.vendor == "apple":
        task = asyncio.create_task(_cleanup_loop(state.sessions, settings.SESSION_CLEANUP_INTERVAL))

    yield

    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    state.reset()
    logger.info("TuneBridge shutdown")


# --------------- FastAPI ------------------


async def _error_handler(_: Request, exc: Exception) -> JSONResponse:
    err = exc if isinstance(exc, TuneBridgeError) else TuneBridgeError()
    if err.status_code >= 500:
        logger.error("{}: {}", type(err).__name__, err.message)
    return JSONResponse({"error": err.message}, status_code=err.status_code)


def create_app(vendor: Optional[str] = None, state: Optional[ServerState] = None) -> FastAPI:
    state = state or build_state(vendor or settings.TB_VENDOR)
    app = FastAPI(title=f"TuneBridge ({state.vendor})", version=VERSION, lifespan=lifespan)
    app.state.bridge = state

    @app.middleware("http")
    async def dispatch(request: Request, call_next: Callable[..., Any]):
        """
        - Everything is open except the Spotify token endpoints,
          which must come from one of our own origins (or carry no Origin at all).
        """
        path = request.url.path or "/"
        if state.vendor == "spotify" and path in spotify.ORIGIN_CHECKED_PATHS:
            origin = request.headers.get("origin")
            if not is_allowed_origin(origin, state.allowed_origins):
                logger.warning("Rejected request to {} from origin {}", path, origin)
                err = OriginForbidden()
                return JSONResponse({"error": err.message}, status_code=err.status_code)
        return await call_next(request)

    app.add_exception_handler(TuneBridgeError, _error_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", name="TuneBridge", vendor=state.vendor, port=state.port)

    for router in VENDOR_ROUTERS[state.vendor]:
        app.include_router(router)
    return app


app = create_app()


# --------------- Runner -------------------


def main(vendor: Optional[str] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run uvicorn with its own logging disabled (Loguru handles logs)."""
    import uvicorn

    from tunebridge.services.logs import configure_logging

    configure_logging()
    vendor = vendor or settings.TB_VENDOR
    host = host or settings.TB_HOST
    port = port or settings.TB_PORT
    if vendor == settings.TB_VENDOR and port == settings.TB_PORT:
        target = app
    else:
        # Origins are derived from the port, so a different port needs its own state
        target = create_app(state=build_state(vendor, port=port))

    config = uvicorn.Config(
        target,
        host=host,
        port=port,
        log_config=None,
        access_log=False,
        loop="asyncio",
        lifespan="on",
    )
    server = uvicorn.Server(config)
    logger.info("Starting Uvicorn on {}:{}", host, port)
    try:
        server.run()  # blocking
    except Exception:  # noqa: BLE001
        logger.exception("Fatal error starting TuneBridge")
        raise
    finally:
        logger.info("Uvicorn exited (graceful={})", getattr(server, "should_exit", None))


if __name__ == "__main__":
    main()
