"""HTTP middleware for fault recovery, request tracking, logging, and security.

Registered in main.py so that ``recover_panic_middleware`` is the outermost
layer; a fault raised anywhere inside, including the authorization gate, ends
up as a generic 500 and never as a dropped connection.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
import time
import uuid
from .config import settings
from .logger import logger
from .schemas import ErrorCode


# ==================== Panic Recovery Middleware ====================

async def recover_panic_middleware(request: Request, call_next):
    """Turn any uncaught exception into a generic 500 without internal detail."""
    try:
        return await call_next(request)
    except Exception:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"[{request_id}] Unhandled error in {request.method} {request.url.path}",
            exc_info=True
        )
        response = JSONResponse(
            status_code=500,
            content={"error": ErrorCode.INTERNAL_ERROR, "message": "Internal Server Error"},
            headers={"Connection": "close"},
        )
        apply_security_headers(response)
        return response


# ==================== Graceful Shutdown Middleware ====================

async def graceful_shutdown_middleware(request: Request, call_next):
    """Track in-flight requests and refuse new ones once shutdown has begun."""
    manager = getattr(request.app.state, "shutdown_manager", None)

    if manager and manager.is_shutting_down:
        logger.warning(
            f"Shutting down, refused {request.method} {request.url.path}"
        )
        return JSONResponse(
            status_code=503,
            content={
                "error": ErrorCode.SERVICE_UNAVAILABLE,
                "message": "Forum is shutting down, retry in a few seconds"
            },
            headers={"Retry-After": "10"}
        )

    if manager:
        manager.request_started()
    try:
        return await call_next(request)
    finally:
        if manager:
            manager.request_finished()


# ==================== Request ID Middleware ====================

async def add_request_id_middleware(request: Request, call_next):
    """Tag each request with an ID for tracing across logs."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ==================== Request Logging Middleware ====================

async def request_logging_middleware(request: Request, call_next):
    """Log each request with its status and duration."""
    start_time = time.perf_counter()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        response = await call_next(request)
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Error: {type(e).__name__} - Duration: {duration:.3f}s"
        )
        raise

    duration = time.perf_counter() - start_time
    identity = getattr(request.state, "identity", None)
    user = f" user_id={identity.user_id}" if identity else ""
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} - "
        f"Status: {response.status_code} - Duration: {duration:.3f}s{user}"
    )
    return response


# ==================== Security Headers Middleware ====================

def apply_security_headers(response) -> None:
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    if settings.APP_ENV == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Allows CDN resources for Swagger UI
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "img-src 'self' data: https://cdn.jsdelivr.net; "
        "font-src 'self' https://cdn.jsdelivr.net"
    )
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"


async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    apply_security_headers(response)
    return response
