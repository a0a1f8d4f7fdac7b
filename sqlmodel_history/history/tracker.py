import logging
from datetime import datetime
from typing import Any, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sqlmodel_history.core.hooks import MutationHooks, apply_update
from sqlmodel_history.db.naive_datetime import NaiveDatetime
from sqlmodel_history.exceptions import NotFoundError, PersistenceError
from sqlmodel_history.history.association import bind_source
from sqlmodel_history.history.options import TrackingOptions, resolve_options
from sqlmodel_history.history.schema import build_history_schema, create_history_model
from sqlmodel_history.history.writer import RevisionWriter
from sqlmodel_history.settings import Settings

logger = logging.getLogger(__name__)


class HistoryTracker:
    """History tracking for one source model: its history model, options, writer and hooks."""

    def __init__(
        self,
        source_model: Type[Any],
        history_model: Type[Any],
        options: TrackingOptions,
        writer: RevisionWriter,
        hooks: MutationHooks,
    ) -> None:
        self.source_model = source_model
        self.history_model = history_model
        self.options = options
        self.writer = writer
        self.hooks = hooks

    @property
    def hook_name(self) -> str:
        return f"history:{self.options.history_table_name}"

    def untrack(self) -> None:
        """Stops recording updates of the source model. Existing history is kept."""
        self.hooks.unregister(self.source_model, self.hook_name)
        logger.info(f"Stopped tracking history for {self.source_model.__name__}")

    async def list_revisions(
        self,
        session: AsyncSession,
        source_id: Any,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Any]:
        """History rows of ``source_id``, oldest revision first.

        Args:
            session: Session to query with.
            source_id: Identity value of the source record.
            since: Only rows captured at or after this time.
            until: Only rows captured at or before this time.

        Aware bounds are converted to UTC to match the naive ``captured_at`` column.
        """
        stmt = select(self.history_model).where(self.history_model.source_id == source_id)
        if since is not None:
            stmt = stmt.where(self.history_model.captured_at >= NaiveDatetime(since))
        if until is not None:
            stmt = stmt.where(self.history_model.captured_at <= NaiveDatetime(until))
        stmt = stmt.order_by(self.history_model.revision)
        try:
            result = await session.execute(stmt)
        except SQLAlchemyError as sqla_err:
            logger.error(f"SQLAlchemy error listing {self.history_model.__name__} for {source_id!r}: {sqla_err}")
            raise PersistenceError(
                f"Database query failed while listing history: {sqla_err}", source_id=source_id, original_error=sqla_err
            ) from sqla_err
        return list(result.scalars().all())

    async def get_revision(self, session: AsyncSession, source_id: Any, revision: int) -> Any:
        """The history row of ``source_id`` with the given revision.

        Raises:
            NotFoundError: If no such revision exists.
        """
        stmt = select(self.history_model).where(
            self.history_model.source_id == source_id,
            self.history_model.revision == revision,
        )
        result = await session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"{self.history_model.__name__} has no revision {revision} for {source_id!r}")
        return record

    async def revert(self, session: AsyncSession, record: Any, *, commit: bool = True) -> Any:
        """Overwrites the tracked fields of the live source record with ``record``'s snapshot.

        Untracked fields are untouched. The update goes through the mutation
        hooks, so it is itself recorded as a new revision.

        Returns:
            The updated source record.

        Raises:
            NotFoundError: If the source record no longer exists.
        """
        identity = getattr(self.source_model, self.options.identity_field)
        result = await session.execute(select(self.source_model).where(identity == record.source_id))
        source = result.scalar_one_or_none()
        if source is None:
            logger.warning(f"Cannot revert {record!r}: {self.source_model.__name__} {record.source_id!r} not found")
            raise NotFoundError(f"{self.source_model.__name__} {record.source_id!r} no longer exists")

        values = {name: getattr(record, name) for name in self.options.tracked_fields}
        logger.info(f"Reverting {self.source_model.__name__} {record.source_id!r} to revision {record.revision}")
        return await apply_update(session, source, values, self.hooks, commit=commit)


def track_history(
    source_model: Type[Any],
    options: Optional[Any] = None,
    *,
    hooks: MutationHooks,
    settings: Optional[Settings] = None,
) -> HistoryTracker:
    """Starts recording every update of ``source_model`` into a derived history table.

    Args:
        source_model: The SQLModel table class to track.
        options: Raw tracking options, see ``resolve_options``.
        hooks: The mutation hooks updates of ``source_model`` are dispatched to.
        settings: Writer settings; read from the environment when omitted.

    Returns:
        The tracker holding the generated history model.

    Raises:
        ConfigurationError: If the options are invalid for the model.
        SchemaError: If the history model cannot be derived or registered.
        AssociationError: If the history model cannot be linked to the source.
    """
    settings = settings or Settings()
    resolved = resolve_options(source_model, options)
    schema = build_history_schema(source_model, resolved)
    history_model = create_history_model(schema)
    bind_source(history_model, source_model, resolved)

    writer = RevisionWriter(
        history_model,
        resolved,
        max_attempts=settings.get_revision_max_attempts(),
        actor_timeout=settings.get_actor_timeout(),
    )
    tracker = HistoryTracker(source_model, history_model, resolved, writer, hooks)
    history_model.history_tracker = tracker
    hooks.register(source_model, tracker.hook_name, writer.write)

    logger.info(
        f"Tracking history for {source_model.__name__} in {resolved.history_table_name} "
        f"(fields: {list(resolved.tracked_fields)})"
    )
    return tracker
