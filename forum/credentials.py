"""Credential store: user records, password hashing and verification."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .auth import hash_password, verify_password
from .errors import DuplicateEntry, InternalFailure, InvalidCredentials, NotFound
from .models import User
from .utils import normalize_email, normalize_name


@dataclass(frozen=True)
class UserRecord:
    """Public view of a user. The password hash never leaves the store."""
    id: int
    name: str
    email: str
    created: datetime


def _to_record(user: User) -> UserRecord:
    return UserRecord(id=user.id, name=user.name, email=user.email, created=user.created)


class CredentialStore:
    """Owns the ``users`` table.

    bcrypt work runs in a worker thread so a slow hash never stalls the event
    loop for other requests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        bcrypt_rounds: int = 12,
        logger: logging.Logger | None = None,
    ):
        self._session_factory = session_factory
        self._rounds = bcrypt_rounds
        self._log = logger or logging.getLogger(__name__)
        self._dummy_hash: str | None = None

    async def register(self, name: str, email: str, password: str) -> int:
        """Create a user and return its id.

        Raises:
            DuplicateEntry: name or email already taken (case-insensitive)
            InternalFailure: the store failed
        """
        name = normalize_name(name)
        email = normalize_email(email)
        hashed = await asyncio.to_thread(hash_password, password, self._rounds)

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    taken = await session.scalar(
                        select(User.id).where(or_(User.email == email, User.name == name)).limit(1)
                    )
                    if taken is not None:
                        raise DuplicateEntry("name or email already in use")
                    user = User(name=name, email=email, hashed_password=hashed)
                    session.add(user)
                    await session.flush()
                    user_id = user.id
            except DuplicateEntry:
                self._log.info(f"Registration rejected, duplicate name or email: {email}")
                raise
            except IntegrityError as e:
                # Lost a race with a concurrent registration
                self._log.info(f"Registration rejected by unique constraint: {email}")
                raise DuplicateEntry("name or email already in use") from e
            except SQLAlchemyError as e:
                self._log.error(f"Failed to register user {email}", exc_info=True)
                raise InternalFailure("could not register user") from e

        self._log.info(f"User registered: id={user_id} name={name}")
        return user_id

    async def verify(self, email: str, password: str) -> int:
        """Return the user id for a matching email/password pair.

        Unknown email and wrong password raise the same ``InvalidCredentials``
        and cost the same bcrypt work.
        """
        email = normalize_email(email)
        user = await self._first(select(User).where(User.email == email))

        if user is None:
            await asyncio.to_thread(verify_password, password, await self._get_dummy_hash())
            self._log.info("Login rejected: invalid credentials")
            raise InvalidCredentials()

        if not await asyncio.to_thread(verify_password, password, user.hashed_password):
            self._log.info("Login rejected: invalid credentials")
            raise InvalidCredentials()

        return user.id

    async def display_name_by_email(self, email: str) -> str:
        user = await self._first(select(User).where(User.email == normalize_email(email)))
        if user is None:
            raise NotFound(f"no user with email {email}")
        return user.name

    async def get_user(self, user_id: int) -> UserRecord:
        user = await self._first(select(User).where(User.id == user_id))
        if user is None:
            raise NotFound(f"no user with id {user_id}")
        return _to_record(user)

    async def _first(self, stmt) -> User | None:
        async with self._session_factory() as session:
            try:
                return (await session.execute(stmt)).scalars().first()
            except SQLAlchemyError as e:
                self._log.error("User lookup failed", exc_info=True)
                raise InternalFailure("user lookup failed") from e

    async def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(
                hash_password, "not-a-real-password", self._rounds
            )
        return self._dummy_hash
