"""Writes one immutable history row per tracked update."""

import asyncio
import inspect
import logging
from contextvars import ContextVar
from typing import Any, FrozenSet, Optional, Tuple, Type

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sqlmodel_history.core.hooks import MutationEvent
from sqlmodel_history.db.naive_datetime import NaiveDatetime
from sqlmodel_history.exceptions import ActorResolutionError, PersistenceError, ReentrantMutationError
from sqlmodel_history.history.options import TrackingOptions

logger = logging.getLogger(__name__)

# (history table, source id) pairs with a write in progress in the current task context
_writes_in_flight: ContextVar[FrozenSet[Tuple[str, Any]]] = ContextVar("history_writes_in_flight", default=frozenset())


class RevisionWriter:
    """Appends a history row capturing the pre-update state of a tracked instance.

    Revisions are numbered ``max(revision) + 1`` per source id inside a
    SAVEPOINT. A concurrent writer that claims the same number makes the insert
    violate the ``(source_id, revision)`` unique constraint; the savepoint is
    rolled back and the number recomputed, up to ``max_attempts`` times. Any
    other integrity failure is raised at once.
    """

    def __init__(
        self,
        history_model: Type[Any],
        options: TrackingOptions,
        *,
        max_attempts: int = 5,
        actor_timeout: Optional[float] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.history_model = history_model
        self.options = options
        self.max_attempts = max_attempts
        self.actor_timeout = actor_timeout

    async def __call__(self, event: MutationEvent) -> Any:
        return await self.write(event)

    async def write(self, event: MutationEvent) -> Any:
        """Records ``event`` as the next revision of its source record.

        Returns:
            The flushed history row. Committing is left to the caller.

        Raises:
            ReentrantMutationError: If the same record is already being recorded in this context.
            ActorResolutionError: If the actor cannot be resolved.
            PersistenceError: If the row cannot be inserted.
        """
        source_id = getattr(event.instance, self.options.identity_field)
        key = (self.history_model.__tablename__, source_id)
        in_flight = _writes_in_flight.get()
        if key in in_flight:
            raise ReentrantMutationError(
                f"{type(event.instance).__name__} {source_id!r} was updated again while its history was being written",
                source_id=source_id,
            )

        token = _writes_in_flight.set(in_flight | {key})
        try:
            actor = await self._resolve_actor(source_id)
            return await self._insert(event.session, event, source_id, actor)
        finally:
            _writes_in_flight.reset(token)

    async def _resolve_actor(self, source_id: Any) -> Optional[str]:
        try:
            actor = self.options.resolve_actor()
            if inspect.isawaitable(actor):
                if self.actor_timeout:
                    actor = await asyncio.wait_for(actor, timeout=self.actor_timeout)
                else:
                    actor = await actor
        except asyncio.TimeoutError as e:
            logger.error(f"Actor resolution timed out after {self.actor_timeout}s for source {source_id!r}")
            raise ActorResolutionError(
                f"Actor resolution timed out after {self.actor_timeout}s", source_id=source_id
            ) from e
        except Exception as e:
            logger.error(f"Actor resolution failed for source {source_id!r}: {e}")
            raise ActorResolutionError(f"Actor resolution failed: {e}", source_id=source_id) from e
        return None if actor is None else str(actor)

    async def next_revision(self, session: AsyncSession, source_id: Any) -> int:
        """The revision number the next history row of ``source_id`` should get."""
        stmt = select(func.coalesce(func.max(self.history_model.revision), 0)).where(
            self.history_model.source_id == source_id
        )
        result = await session.execute(stmt)
        return int(result.scalar_one()) + 1

    async def _lost_revision_race(self, session: AsyncSession, source_id: Any, revision: Optional[int]) -> bool:
        """Whether an integrity failure came from another writer claiming ``revision`` first.

        Any other integrity failure (a missing source row, a NULL in a required
        column) is not worth retrying.
        """
        if revision is None:
            return False
        stmt = select(func.count()).where(
            self.history_model.source_id == source_id,
            self.history_model.revision == revision,
        )
        try:
            result = await session.execute(stmt)
        except SQLAlchemyError as sqla_err:
            raise PersistenceError(
                f"Database error while checking revision {revision} for {source_id!r}: {sqla_err}",
                source_id=source_id,
                original_error=sqla_err,
            ) from sqla_err
        return result.scalar_one() > 0

    def build_record(self, event: MutationEvent, source_id: Any, actor: Optional[str], revision: int) -> Any:
        tracked = self.options.tracked_fields
        values = {name: event.previous_values.get(name) for name in tracked}
        return self.history_model(
            **values,
            source_id=source_id,
            revision=revision,
            actor=actor,
            captured_at=NaiveDatetime.now(),
            changed_fields=[name for name in event.changed_fields if name in tracked],
        )

    async def _insert(self, session: AsyncSession, event: MutationEvent, source_id: Any, actor: Optional[str]) -> Any:
        last_error: Optional[IntegrityError] = None
        for attempt in range(1, self.max_attempts + 1):
            revision: Optional[int] = None
            try:
                async with session.begin_nested():
                    revision = await self.next_revision(session, source_id)
                    record = self.build_record(event, source_id, actor, revision)
                    session.add(record)
                    await session.flush()
            except IntegrityError as ie:
                if not await self._lost_revision_race(session, source_id, revision):
                    logger.error(
                        f"Integrity error writing {self.history_model.__name__} for {source_id!r} "
                        f"(revision {revision}): {ie}"
                    )
                    raise PersistenceError(
                        f"Integrity error while writing history for {source_id!r}: {ie}",
                        source_id=source_id,
                        original_error=ie,
                    ) from ie
                last_error = ie
                logger.warning(
                    f"Revision conflict writing {self.history_model.__name__} for source {source_id!r} "
                    f"(attempt {attempt}/{self.max_attempts}): {ie}"
                )
                continue
            except SQLAlchemyError as sqla_err:
                logger.error(f"SQLAlchemy error writing {self.history_model.__name__} for {source_id!r}: {sqla_err}")
                raise PersistenceError(
                    f"Database error while writing history for {source_id!r}: {sqla_err}",
                    source_id=source_id,
                    original_error=sqla_err,
                ) from sqla_err

            logger.debug(
                f"Wrote {self.history_model.__name__} revision {revision} for source {source_id!r} "
                f"(changed: {list(record.changed_fields)}, actor: {actor!r})"
            )
            return record

        logger.error(
            f"Giving up writing {self.history_model.__name__} for source {source_id!r} "
            f"after {self.max_attempts} revision conflicts"
        )
        raise PersistenceError(
            f"Could not assign a unique revision for {source_id!r} after {self.max_attempts} attempts",
            source_id=source_id,
            original_error=last_error,
        ) from last_error
