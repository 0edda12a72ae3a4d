"""Forum application: wiring, lifecycle, middleware stack and error handlers."""

from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import asyncio

from . import db
from .config import settings
from .context import build_context
from .routes import router, limiter
from .cache import cache_manager
from .errors import InternalFailure, NotFound, Unauthenticated
from .logger import logger
from .middleware import (
    recover_panic_middleware,
    graceful_shutdown_middleware,
    add_request_id_middleware,
    request_logging_middleware,
    security_headers_middleware,
)
from .monitoring import setup_monitoring
from .schemas import ErrorCode
from .sessions import SessionSweeper

# ==================== Graceful Shutdown ====================


class GracefulShutdownManager:
    """Manages graceful shutdown of the application.

    Tracks active requests and lets in-flight requests complete before the
    session sweeper, cache and database connections are closed.
    """

    def __init__(self, shutdown_timeout: float = settings.GRACEFUL_SHUTDOWN_TIMEOUT):
        self.is_shutting_down = False
        self.active_requests = 0
        self.shutdown_timeout = shutdown_timeout

    def request_started(self):
        if not self.is_shutting_down:
            self.active_requests += 1

    def request_finished(self):
        if self.active_requests > 0:
            self.active_requests -= 1

    async def initiate_shutdown(self):
        """Stop accepting requests and wait for in-flight ones, up to the timeout."""
        if self.is_shutting_down:
            return

        logger.info("Graceful shutdown initiated")
        self.is_shutting_down = True

        if self.active_requests == 0:
            logger.info("Nothing in flight, shutting down now")
            return

        logger.info(f"Waiting for {self.active_requests} active request(s) to complete...")
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while self.active_requests > 0:
            if loop.time() - start_time >= self.shutdown_timeout:
                logger.warning(
                    f"Shutdown timeout ({self.shutdown_timeout}s) reached with "
                    f"{self.active_requests} request(s) still active - forcing shutdown"
                )
                return
            await asyncio.sleep(0.1)
        logger.info("All active requests completed successfully")


# ==================== Application Lifecycle ====================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the cache and start the session sweeper; undo both on the way out."""
    logger.info(f"Starting {settings.APP_NAME} in {settings.APP_ENV} mode")
    logger.info(f"Database dialect: {db.engine.dialect.name}; schema managed by Alembic")

    if settings.CACHE_ENABLED:
        await cache_manager.connect()

    sweeper = SessionSweeper(app.state.forum.sessions, settings.SESSION_SWEEP_INTERVAL_SECONDS)
    sweeper.start()
    app.state.session_sweeper = sweeper

    logger.info(
        f"{settings.APP_NAME} ready (session sweep every {settings.SESSION_SWEEP_INTERVAL_SECONDS}s, 0 = off)"
    )

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await app.state.shutdown_manager.initiate_shutdown()
    await sweeper.stop()

    if settings.CACHE_ENABLED:
        await cache_manager.disconnect()

    await db.dispose_engine()

    logger.info(f"{settings.APP_NAME} shutdown complete")

# ==================== Application Setup ====================


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
app.state.forum = build_context(db.async_session, settings)
app.state.shutdown_manager = GracefulShutdownManager()

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ==================== Forum Error Handlers ====================


@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    """Send the client to the login entry point; drop a stale cookie if sent."""
    response = RedirectResponse(url=settings.LOGIN_PATH, status_code=303)
    cookie_name = request.app.state.forum.settings.SESSION_COOKIE_NAME
    if cookie_name in request.cookies:
        response.delete_cookie(cookie_name, path="/")
    return response


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(
        status_code=404,
        content={"error": ErrorCode.NOT_FOUND, "message": str(exc) or "Not found"},
    )


@app.exception_handler(InternalFailure)
async def internal_failure_handler(request: Request, exc: InternalFailure):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"[{request_id}] Internal failure in {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": ErrorCode.INTERNAL_ERROR, "message": "Internal Server Error"},
    )


# Include API routes
app.include_router(router)

# Setup Prometheus monitoring
setup_monitoring(app)

# Middleware registration (last registered = outermost layer)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(security_headers_middleware)
app.middleware("http")(request_logging_middleware)
app.middleware("http")(add_request_id_middleware)
app.middleware("http")(graceful_shutdown_middleware)
app.middleware("http")(recover_panic_middleware)
