# API route definitions (HTTP layer)
# Defines ENDPOINTS; the forum core is reached through services

import os
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from slowapi import Limiter
from slowapi.util import get_remote_address

from . import services
from .cache import cache_manager
from .config import settings
from .context import ForumContext
from .dependencies import get_forum, optional_session, require_session
from .errors import NotFound, Unauthenticated
from .reactions import TargetKind
from .schemas import (
    CommentCreate,
    FeedResponse,
    LoginResponse,
    PostCreate,
    PostOut,
    PostView,
    UserLogin,
    UserOut,
    UserProfile,
    UserRegister,
)
from .sessions import SessionIdentity

limiter = Limiter(key_func=get_remote_address)


def conditional_limit(limit_string):
    """Apply rate limit only if not in test mode."""
    if os.getenv('TEST_MODE'):
        def decorator(func):
            return func
        return decorator
    return limiter.limit(limit_string)


def _parse_id(raw: str | None) -> int:
    """Positive integer id from a path or query string; anything else is a 404."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise NotFound(f"invalid id {raw!r}")
    if value < 1:
        raise NotFound(f"invalid id {raw!r}")
    return value


def _back_to_referrer(request: Request) -> RedirectResponse:
    return RedirectResponse(url=request.headers.get("referer") or "/", status_code=303)


router = APIRouter()


# ============================================================================
# Service Endpoints
# ============================================================================

@router.get("/health")
async def health_check():
    """Health check for load balancers.

    Returns:
        - 200 OK if service and database are healthy (cache may be degraded)
        - 503 Service Unavailable if the database is unreachable
    """
    from . import db

    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "environment": settings.APP_ENV,
    }

    if await db.check_db_connection():
        health_status["database"] = "connected"
    else:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        raise HTTPException(status_code=503, detail=health_status)

    if settings.CACHE_ENABLED:
        is_healthy = await cache_manager.health_check()
        health_status["cache"] = "connected" if is_healthy else "disconnected"
        if not is_healthy:
            health_status["status"] = "degraded"  # Service works but cache is down
    else:
        health_status["cache"] = "disabled"

    return health_status


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)


# ============================================================================
# Feed
# ============================================================================

@router.get("/", response_model=FeedResponse)
@conditional_limit(settings.RATE_LIMIT_READ)
async def home(
    request: Request,
    category: str = "latest",
    categories: list[str] = Query(default=[]),
    forum: ForumContext = Depends(get_forum),
    viewer: SessionIdentity | None = Depends(optional_session),
):
    """Latest posts, or the viewer's own (``created``) or liked (``liked``) posts."""
    if category in ("created", "liked") and viewer is None:
        raise Unauthenticated(f"the '{category}' feed needs a session")
    return await services.feed(forum, viewer, category, categories)


# ============================================================================
# Authentication Endpoints
# ============================================================================

@router.get("/user/login")
async def login_entry():
    """Where unauthenticated requests are sent."""
    return {
        "message": "Authentication required: POST email and password to this path",
        "signup": "/user/signup",
    }


@router.post("/user/signup", response_model=UserOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def signup(user: UserRegister, request: Request, forum: ForumContext = Depends(get_forum)):
    """Register a new user.

    Raises:
        400: Name or email already in use
        422: Field validation failed
    """
    return await services.register_user(forum, user)


@router.post("/user/login", response_model=LoginResponse)
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    forum: ForumContext = Depends(get_forum),
):
    """Log in and receive the session cookie.

    Raises:
        401: Email or password is incorrect (same message for both)
    """
    token, body = await services.login_user(forum, credentials)
    response.set_cookie(
        key=forum.settings.SESSION_COOKIE_NAME,
        value=token,
        expires=body.expires_at,
        path="/",
        httponly=True,
        samesite="lax",
        secure=forum.settings.SESSION_COOKIE_SECURE,
    )
    return body


@router.api_route("/user/logout", methods=["GET", "POST"])
async def logout(
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    await services.logout_user(forum, identity)
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie(forum.settings.SESSION_COOKIE_NAME, path="/")
    return response


# ============================================================================
# Users
# ============================================================================

@router.get("/users/me", response_model=UserOut)
@conditional_limit(settings.RATE_LIMIT_READ)
async def current_user(
    request: Request,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await services.get_own_account(forum, identity)


@router.get("/users/{user_id}", response_model=UserProfile)
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_user(user_id: int, request: Request, forum: ForumContext = Depends(get_forum)):
    return await services.get_user_profile(forum, user_id)


# ============================================================================
# Posts & Comments
# ============================================================================

@router.post("/post/create", response_model=PostOut, status_code=201)
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def create_post(
    data: PostCreate,
    request: Request,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await services.create_post(forum, identity, data)


@router.get("/post/view/{post_id}", response_model=PostView)
@conditional_limit(settings.RATE_LIMIT_READ)
async def view_post(
    post_id: str,
    request: Request,
    forum: ForumContext = Depends(get_forum),
    viewer: SessionIdentity | None = Depends(optional_session),
):
    return await services.view_post(forum, _parse_id(post_id), viewer)


@router.post("/post/view/{post_id}")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def add_comment(
    post_id: str,
    data: CommentCreate,
    request: Request,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    """Comment on a post; a rejected comment re-renders the post with the draft."""
    target = _parse_id(post_id)
    rejected = await services.add_comment(forum, identity, target, data.content)
    if rejected is not None:
        return JSONResponse(status_code=422, content=rejected.model_dump(mode="json"))
    return RedirectResponse(url=f"/post/view/{target}", status_code=303)


# ============================================================================
# Reactions
# ============================================================================

async def _toggle(request, forum, identity, kind: TargetKind, raw_id: str | None, like: bool):
    await services.react(forum, identity, kind, _parse_id(raw_id), like)
    return _back_to_referrer(request)


@router.api_route("/likePost", methods=["GET", "POST"])
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def like_post(
    request: Request,
    id: str | None = None,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await _toggle(request, forum, identity, TargetKind.POST, id, like=True)


@router.api_route("/dislikePost", methods=["GET", "POST"])
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def dislike_post(
    request: Request,
    id: str | None = None,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await _toggle(request, forum, identity, TargetKind.POST, id, like=False)


@router.api_route("/likeComment", methods=["GET", "POST"])
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def like_comment(
    request: Request,
    id: str | None = None,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await _toggle(request, forum, identity, TargetKind.COMMENT, id, like=True)


@router.api_route("/dislikeComment", methods=["GET", "POST"])
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def dislike_comment(
    request: Request,
    id: str | None = None,
    forum: ForumContext = Depends(get_forum),
    identity: SessionIdentity = Depends(require_session),
):
    return await _toggle(request, forum, identity, TargetKind.COMMENT, id, like=False)
