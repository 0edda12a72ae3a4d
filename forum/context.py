"""Wiring of the forum components for one application instance."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import Settings
from .credentials import CredentialStore
from .crud import PostStore
from .reactions import ReactionEngine
from .sessions import SessionManager, utcnow


@dataclass
class ForumContext:
    """Everything a request handler needs, built once and kept on ``app.state``."""
    settings: Settings
    credentials: CredentialStore
    sessions: SessionManager
    reactions: ReactionEngine
    posts: PostStore


def build_context(
    session_factory: async_sessionmaker,
    app_settings: Settings,
    clock: Callable[[], datetime] = utcnow,
) -> ForumContext:
    reactions = ReactionEngine(session_factory)
    return ForumContext(
        settings=app_settings,
        credentials=CredentialStore(session_factory, bcrypt_rounds=app_settings.BCRYPT_ROUNDS),
        sessions=SessionManager(
            session_factory,
            ttl=timedelta(hours=app_settings.SESSION_TTL_HOURS),
            clock=clock,
        ),
        reactions=reactions,
        posts=PostStore(session_factory, reactions),
    )
