"""Reaction engine: like/dislike toggles on posts and comments.

Each (user, target) pair has at most one stance row. ``like`` and ``dislike``
are toggles:

    current   requested   result
    none      like        like
    like      like        none     (click again to undo)
    dislike   like        like     (switching sides takes one call)

and symmetrically for ``dislike``. Counts are always aggregated from the rows
themselves, so there is no counter that could drift under concurrent toggles.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import dialect_insert
from .errors import InternalFailure, NotFound
from .models import Comment, Post, Reaction


class TargetKind(str, Enum):
    POST = "post"
    COMMENT = "comment"


class Stance(str, Enum):
    LIKE = "like"
    DISLIKE = "dislike"


@dataclass(frozen=True)
class ReactionCounts:
    likes: int = 0
    dislikes: int = 0


@dataclass(frozen=True)
class ReactionState:
    """Outcome of a toggle: the caller's new stance and the live totals."""
    target_kind: TargetKind
    target_id: int
    stance: Stance | None
    likes: int
    dislikes: int


_TARGET_MODELS = {TargetKind.POST: Post, TargetKind.COMMENT: Comment}

# Upper bound on re-reads when a concurrent first reaction wins the insert
_MAX_ATTEMPTS = 3


def next_stance(current: Stance | None, requested: Stance) -> Stance | None:
    """The toggle transition: same stance clears, anything else sets."""
    if current == requested:
        return None
    return requested


def _target_kind(value: TargetKind | str) -> TargetKind:
    try:
        return TargetKind(value)
    except ValueError:
        raise NotFound(f"unknown reaction target kind {value!r}") from None


def _counts_columns():
    return (
        func.coalesce(func.sum(case((Reaction.stance == Stance.LIKE.value, 1), else_=0)), 0),
        func.coalesce(func.sum(case((Reaction.stance == Stance.DISLIKE.value, 1), else_=0)), 0),
    )


class ReactionEngine:
    """Sole writer of the ``reactions`` table.

    Callers must have resolved the user through the authorization gate; the
    engine trusts the user id it is given.
    """

    def __init__(self, session_factory: async_sessionmaker, logger: logging.Logger | None = None):
        self._session_factory = session_factory
        self._log = logger or logging.getLogger(__name__)

    async def like(self, user_id: int, target_kind: TargetKind | str, target_id: int) -> ReactionState:
        return await self._toggle(user_id, _target_kind(target_kind), target_id, Stance.LIKE)

    async def dislike(self, user_id: int, target_kind: TargetKind | str, target_id: int) -> ReactionState:
        return await self._toggle(user_id, _target_kind(target_kind), target_id, Stance.DISLIKE)

    async def counts(self, target_kind: TargetKind | str, target_id: int) -> ReactionCounts:
        totals = await self.counts_for(target_kind, [target_id])
        return totals[target_id]

    async def counts_for(self, target_kind: TargetKind | str, target_ids: list[int]) -> dict[int, ReactionCounts]:
        """Live like/dislike totals for many targets of one kind."""
        kind = _target_kind(target_kind)
        totals = {target_id: ReactionCounts() for target_id in target_ids}
        if not target_ids:
            return totals

        likes, dislikes = _counts_columns()
        stmt = (
            select(Reaction.target_id, likes, dislikes)
            .where(Reaction.target_kind == kind.value, Reaction.target_id.in_(target_ids))
            .group_by(Reaction.target_id)
        )
        async with self._session_factory() as session:
            try:
                rows = (await session.execute(stmt)).all()
            except SQLAlchemyError as e:
                self._log.error(f"Failed to count reactions for {kind.value}s", exc_info=True)
                raise InternalFailure("could not count reactions") from e

        for target_id, like_count, dislike_count in rows:
            totals[target_id] = ReactionCounts(likes=int(like_count), dislikes=int(dislike_count))
        return totals

    async def stances_of(self, user_id: int, target_kind: TargetKind | str, target_ids: list[int]) -> dict[int, Stance]:
        """The user's stance on each target that has one."""
        kind = _target_kind(target_kind)
        if not target_ids:
            return {}
        stmt = select(Reaction.target_id, Reaction.stance).where(
            Reaction.user_id == user_id,
            Reaction.target_kind == kind.value,
            Reaction.target_id.in_(target_ids),
        )
        async with self._session_factory() as session:
            try:
                rows = (await session.execute(stmt)).all()
            except SQLAlchemyError as e:
                self._log.error(f"Failed to read stances for user id={user_id}", exc_info=True)
                raise InternalFailure("could not read reactions") from e
        return {target_id: Stance(stance) for target_id, stance in rows}

    async def stance_of(self, user_id: int, target_kind: TargetKind | str, target_id: int) -> Stance | None:
        stances = await self.stances_of(user_id, target_kind, [target_id])
        return stances.get(target_id)

    # ==================== Toggle ====================

    async def _toggle(self, user_id: int, kind: TargetKind, target_id: int, requested: Stance) -> ReactionState:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    await self._ensure_target(session, kind, target_id)
                    stance = await self._apply(session, user_id, kind, target_id, requested)
                    likes, dislikes = await self._live_counts(session, kind, target_id)
            except NotFound:
                self._log.info(f"Reaction rejected, {kind.value} id={target_id} does not exist")
                raise
            except SQLAlchemyError as e:
                self._log.error(
                    f"Failed to apply {requested.value} by user id={user_id} on {kind.value} id={target_id}",
                    exc_info=True,
                )
                raise InternalFailure("could not apply reaction") from e

        self._log.debug(
            f"Reaction applied: user_id={user_id} {kind.value}={target_id} "
            f"requested={requested.value} stance={stance.value if stance else 'none'}"
        )
        return ReactionState(kind, target_id, stance, likes, dislikes)

    async def _ensure_target(self, session: AsyncSession, kind: TargetKind, target_id: int) -> None:
        model = _TARGET_MODELS[kind]
        exists = await session.scalar(select(model.id).where(model.id == target_id))
        if exists is None:
            raise NotFound(f"{kind.value} {target_id} does not exist")

    async def _apply(
        self,
        session: AsyncSession,
        user_id: int,
        kind: TargetKind,
        target_id: int,
        requested: Stance,
    ) -> Stance | None:
        key = (
            Reaction.user_id == user_id,
            Reaction.target_kind == kind.value,
            Reaction.target_id == target_id,
        )
        for _ in range(_MAX_ATTEMPTS):
            current_value = await session.scalar(select(Reaction.stance).where(*key).with_for_update())
            current = Stance(current_value) if current_value is not None else None
            result = next_stance(current, requested)

            if current is None:
                stmt = dialect_insert(session, Reaction).values(
                    user_id=user_id,
                    target_kind=kind.value,
                    target_id=target_id,
                    stance=result.value,
                ).on_conflict_do_nothing(
                    index_elements=[Reaction.user_id, Reaction.target_kind, Reaction.target_id]
                )
                inserted = await session.execute(stmt)
                if inserted.rowcount == 1:
                    return result
                # A concurrent request created the row first; toggle against it
                continue

            if result is None:
                await session.execute(delete(Reaction).where(*key))
            else:
                await session.execute(update(Reaction).where(*key).values(stance=result.value))
            return result

        raise InternalFailure(f"reaction on {kind.value} {target_id} kept changing underneath")

    async def _live_counts(self, session: AsyncSession, kind: TargetKind, target_id: int) -> tuple[int, int]:
        likes, dislikes = _counts_columns()
        row = (
            await session.execute(
                select(likes, dislikes).where(
                    Reaction.target_kind == kind.value, Reaction.target_id == target_id
                )
            )
        ).one()
        return int(row[0]), int(row[1])
