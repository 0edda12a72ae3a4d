"""FastAPI dependencies: the forum context and the authorization gate."""

from fastapi import Depends, Request

from .context import ForumContext
from .errors import Unauthenticated
from .sessions import SessionIdentity


def get_forum(request: Request) -> ForumContext:
    """The ForumContext this application was built with."""
    return request.app.state.forum


async def optional_session(
    request: Request,
    forum: ForumContext = Depends(get_forum),
) -> SessionIdentity | None:
    """Resolve the session cookie if there is a live one, otherwise None."""
    token = request.cookies.get(forum.settings.SESSION_COOKIE_NAME)
    identity = await forum.sessions.resolve_session(token)
    request.state.identity = identity
    return identity


async def require_session(
    identity: SessionIdentity | None = Depends(optional_session),
) -> SessionIdentity:
    """Authorization gate for protected routes.

    Without a live session the route handler never runs; ``Unauthenticated``
    is turned into a redirect to the login page by the app's exception handler.
    """
    if identity is None:
        raise Unauthenticated("a valid session is required")
    return identity
