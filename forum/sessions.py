"""Session manager: issues, resolves and revokes login sessions.

A user holds at most one session. ``sessions.user_id`` is the primary key and
every login is an upsert keyed by it, so a second login atomically replaces
the first token. Expiry is lazy: lookups ignore rows whose ``expires_at`` has
passed, and ``purge_expired`` reclaims them when the sweeper runs.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .auth import generate_session_token
from .db import dialect_insert
from .errors import InternalFailure
from .models import Session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class SessionIdentity:
    """Who an authenticated request is acting as."""
    token: str
    user_id: int
    user_name: str
    expires_at: datetime


class SessionManager:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ):
        self._session_factory = session_factory
        self._ttl = ttl
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def create_session(self, user_id: int, display_name: str) -> tuple[str, datetime]:
        """Start a session for a user, replacing any session they already hold.

        Returns:
            (token, expires_at) for the transport layer to put in a cookie
        """
        token = generate_session_token()
        expires_at = self._clock() + self._ttl

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    stmt = dialect_insert(session, Session).values(
                        user_id=user_id,
                        token=token,
                        user_name=display_name,
                        expires_at=expires_at,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[Session.user_id],
                        set_={
                            "token": stmt.excluded.token,
                            "user_name": stmt.excluded.user_name,
                            "expires_at": stmt.excluded.expires_at,
                        },
                    )
                    await session.execute(stmt)
            except SQLAlchemyError as e:
                self._log.error(f"Failed to create session for user id={user_id}", exc_info=True)
                raise InternalFailure("could not create session") from e

        self._log.info(f"Session created: user_id={user_id} expires_at={expires_at.isoformat()}")
        return token, expires_at

    async def resolve_session(self, token: str | None) -> SessionIdentity | None:
        """Return the live session for a token, or None if unknown or expired."""
        if not token:
            return None

        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Session).where(
                        Session.token == token,
                        Session.expires_at > self._clock(),
                    )
                )
                row = result.scalars().first()
            except SQLAlchemyError as e:
                self._log.error("Session lookup failed", exc_info=True)
                raise InternalFailure("session lookup failed") from e

        if row is None:
            return None
        return SessionIdentity(
            token=row.token,
            user_id=row.user_id,
            user_name=row.user_name,
            expires_at=as_utc(row.expires_at),
        )

    async def revoke_session(self, user_id: int) -> None:
        """Delete the user's sessions. Revoking a logged-out user is a no-op."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(delete(Session).where(Session.user_id == user_id))
                    revoked = result.rowcount
            except SQLAlchemyError as e:
                self._log.error(f"Failed to revoke session for user id={user_id}", exc_info=True)
                raise InternalFailure("could not revoke session") from e

        if revoked:
            self._log.info(f"Session revoked: user_id={user_id}")

    async def purge_expired(self) -> int:
        """Delete sessions whose expiry has passed and return how many went."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        delete(Session).where(Session.expires_at <= self._clock())
                    )
                    purged = result.rowcount or 0
            except SQLAlchemyError as e:
                self._log.error("Failed to purge expired sessions", exc_info=True)
                raise InternalFailure("could not purge sessions") from e

        if purged:
            self._log.info(f"Purged {purged} expired session(s)")
        return purged


class SessionSweeper:
    """Periodically reclaims expired session rows while the app is running."""

    def __init__(self, manager: SessionManager, interval: float, logger: logging.Logger | None = None):
        self.manager = manager
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._log = logger or logging.getLogger(__name__)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run())
        self._log.info(f"Session sweeper started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._log.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.manager.purge_expired()
            except InternalFailure:
                # Logged by the manager; try again next round
                continue
