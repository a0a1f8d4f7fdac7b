from typing import Any, ClassVar, Dict

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from sqlmodel_history.exceptions import ConfigurationError


class HistoryRecordBase(SQLModel):
    """Base class of every generated history table model.

    Generated subclasses are bound to the tracker that created them, which
    knows the tracked fields and the mutation hooks a revert must go through.
    """

    history_tracker: ClassVar[Any] = None
    history_schema: ClassVar[Any] = None

    @classmethod
    def _tracker(cls) -> Any:
        if cls.history_tracker is None:
            raise ConfigurationError(f"{cls.__name__} is not bound to a history tracker", model_name=cls.__name__)
        return cls.history_tracker

    def snapshot(self) -> Dict[str, Any]:
        """The tracked field values captured by this row."""
        return {name: getattr(self, name) for name in self._tracker().options.tracked_fields}

    async def revert(self, session: AsyncSession) -> Any:
        """Re-applies this snapshot onto the live source record and returns the source record.

        The revert is itself an update, so it is recorded as a new revision.
        """
        return await self._tracker().revert(session, self)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(history_id={getattr(self, 'history_id', None)}, "
            f"source_id={getattr(self, 'source_id', None)!r}, "
            f"revision={getattr(self, 'revision', None)})>"
        )
