"""Business logic layer between the HTTP routes and the forum core.

Translates policy outcomes from the core (duplicate signups, bad credentials,
missing targets) into structured HTTP errors, and assembles response models.
Store faults propagate as ``InternalFailure`` and are rendered by the
application's exception handler.
"""

from fastapi import HTTPException

from .cache import cache_manager, make_cache_key, USER_PROFILE_PREFIX
from .context import ForumContext
from .crud import CommentRecord, PostRecord
from .errors import DuplicateEntry, InvalidCredentials
from .logger import logger
from .monitoring import LOGIN_ATTEMPTS, REACTION_TOGGLES
from .reactions import ReactionState, TargetKind
from .schemas import (
    CommentOut,
    ErrorCode,
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
from .utils import comment_problem

FEED_FILTERS = ("latest", "created", "liked")


# ==================== Helper Functions ====================

def _post_out(post: PostRecord, stance=None) -> PostOut:
    return PostOut(
        id=post.id,
        title=post.title,
        content=post.content,
        categories=post.categories,
        author=post.author,
        created=post.created,
        likes=post.likes,
        dislikes=post.dislikes,
        viewer_stance=stance.value if stance else None,
    )


def _comment_out(comment: CommentRecord, stance=None) -> CommentOut:
    return CommentOut(
        id=comment.id,
        post_id=comment.post_id,
        author=comment.author,
        content=comment.content,
        created=comment.created,
        likes=comment.likes,
        dislikes=comment.dislikes,
        viewer_stance=stance.value if stance else None,
    )


# ==================== Accounts ====================


async def register_user(forum: ForumContext, data: UserRegister) -> UserOut:
    """Create an account. Duplicate name or email is a 400 the form can show."""
    logger.info(f"Registering new user: {data.email}")
    try:
        user_id = await forum.credentials.register(data.name, data.email, data.password)
    except DuplicateEntry as e:
        # Unlike login, signup does reveal that the name or email is taken
        raise HTTPException(
            status_code=400,
            detail={
                "error": ErrorCode.DUPLICATE_ENTRY,
                "message": "Username or email address is already in use",
                "details": {"name": data.name, "email": data.email},
            },
        ) from e

    user = await forum.credentials.get_user(user_id)
    return UserOut(id=user.id, name=user.name, email=user.email, created=user.created)


async def login_user(forum: ForumContext, data: UserLogin) -> tuple[str, LoginResponse]:
    """Verify credentials and open a session, replacing any previous one.

    Returns the session token, which the route attaches as the cookie, and the
    response body.
    """
    try:
        user_id = await forum.credentials.verify(data.email, data.password)
    except InvalidCredentials as e:
        LOGIN_ATTEMPTS.labels(outcome="invalid_credentials").inc()
        raise HTTPException(
            status_code=401,
            detail={
                "error": ErrorCode.INVALID_CREDENTIALS,
                "message": "Email or password is incorrect",
                "details": {},
            },
        ) from e

    name = await forum.credentials.display_name_by_email(data.email)
    token, expires_at = await forum.sessions.create_session(user_id, name)
    LOGIN_ATTEMPTS.labels(outcome="success").inc()
    logger.info(f"Login successful: user_id={user_id}")
    return token, LoginResponse(user_id=user_id, name=name, expires_at=expires_at)


async def logout_user(forum: ForumContext, identity: SessionIdentity) -> None:
    await forum.sessions.revoke_session(identity.user_id)
    logger.info(f"Logout: user_id={identity.user_id}")


async def get_own_account(forum: ForumContext, identity: SessionIdentity) -> UserOut:
    user = await forum.credentials.get_user(identity.user_id)
    return UserOut(id=user.id, name=user.name, email=user.email, created=user.created)


async def get_user_profile(forum: ForumContext, user_id: int) -> UserProfile:
    """Public profile by id, served from Redis when cached."""
    cache_key = make_cache_key(USER_PROFILE_PREFIX, user_id)
    if forum.settings.CACHE_ENABLED:
        cached = await cache_manager.get(cache_key)
        if cached:
            return UserProfile(**cached)

    user = await forum.credentials.get_user(user_id)
    profile = UserProfile(id=user.id, name=user.name, created=user.created)
    if forum.settings.CACHE_ENABLED:
        await cache_manager.set(cache_key, profile.model_dump(mode="json"))
    return profile


# ==================== Posts & Comments ====================


async def create_post(forum: ForumContext, identity: SessionIdentity, data: PostCreate) -> PostOut:
    post_id = await forum.posts.create_post(
        identity.user_id, identity.user_name, data.title, data.content, data.categories
    )
    return _post_out(await forum.posts.get_post(post_id))


async def view_post(
    forum: ForumContext,
    post_id: int,
    viewer: SessionIdentity | None,
    comment_error: str | None = None,
    comment_draft: str | None = None,
) -> PostView:
    """Post, comments and live totals; includes the viewer's own stances."""
    post = await forum.posts.get_post(post_id)
    comments = await forum.posts.comments_for(post_id)

    post_stances, comment_stances = {}, {}
    if viewer is not None:
        post_stances = await forum.reactions.stances_of(viewer.user_id, TargetKind.POST, [post.id])
        comment_stances = await forum.reactions.stances_of(
            viewer.user_id, TargetKind.COMMENT, [c.id for c in comments]
        )

    return PostView(
        post=_post_out(post, post_stances.get(post.id)),
        comments=[_comment_out(c, comment_stances.get(c.id)) for c in comments],
        is_authenticated=viewer is not None,
        comment_error=comment_error,
        comment_draft=comment_draft,
    )


async def add_comment(
    forum: ForumContext, identity: SessionIdentity, post_id: int, content: str
) -> PostView | None:
    """Post a comment.

    Returns None on success. On a validation failure nothing is stored and the
    post view is returned with the error and the rejected draft.
    """
    problem = comment_problem(
        content, forum.settings.COMMENT_MAX_CHARS, forum.settings.COMMENT_MAX_LINES
    )
    if problem:
        logger.info(f"Comment rejected on post id={post_id}: {problem}")
        return await view_post(forum, post_id, identity, comment_error=problem, comment_draft=content)

    await forum.posts.add_comment(post_id, identity.user_id, identity.user_name, content)
    return None


async def feed(
    forum: ForumContext,
    viewer: SessionIdentity | None,
    feed_filter: str = "latest",
    categories: list[str] | None = None,
) -> FeedResponse:
    """Home feed. ``created`` and ``liked`` need a viewer; routes gate them."""
    if feed_filter not in FEED_FILTERS:
        feed_filter = "latest"

    if feed_filter == "created":
        posts = await forum.posts.posts_by_author(viewer.user_id)
    elif feed_filter == "liked":
        posts = await forum.posts.posts_liked_by(viewer.user_id)
    elif categories:
        posts = await forum.posts.posts_in_categories(categories)
    else:
        posts = await forum.posts.latest_posts()

    if categories and feed_filter != "latest":
        wanted = set(categories)
        posts = [p for p in posts if wanted.intersection(p.categories)]

    return FeedResponse(
        filter=feed_filter,
        categories=categories or [],
        items=[_post_out(p) for p in posts],
        total=len(posts),
        is_authenticated=viewer is not None,
    )


# ==================== Reactions ====================


async def react(
    forum: ForumContext, identity: SessionIdentity, kind: TargetKind, target_id: int, like: bool
) -> ReactionState:
    """Apply a like or dislike toggle for the authenticated user."""
    if like:
        state = await forum.reactions.like(identity.user_id, kind, target_id)
    else:
        state = await forum.reactions.dislike(identity.user_id, kind, target_id)
    REACTION_TOGGLES.labels(
        kind=kind.value, result=state.stance.value if state.stance else "none"
    ).inc()
    return state
