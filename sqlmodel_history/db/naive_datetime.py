from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

from pydantic_core import core_schema


class NaiveDatetime(datetime):
    """UTC wall-clock time without tzinfo, the form history ``captured_at`` values take.

    ``captured_at`` is a ``TIMESTAMP WITHOUT TIME ZONE`` column. Aware values are
    shifted to UTC before their tzinfo is dropped, so capture times written by the
    revision writer and bounds passed to history queries compare on one clock.
    """

    def __new__(cls, *args, **kwargs):
        if args and isinstance(args[0], datetime):
            return cls.normalize(args[0])
        return super().__new__(cls, *args, **kwargs)

    @classmethod
    def normalize(cls, value: datetime) -> "NaiveDatetime":
        """``value`` as naive UTC. Naive input is assumed to be UTC already."""
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return super().__new__(
            cls, value.year, value.month, value.day, value.hour, value.minute, value.second, value.microsecond
        )

    @classmethod
    def now(cls, tz: Optional[tzinfo] = None) -> "NaiveDatetime":
        """Capture time for a new history row. ``tz`` is accepted for signature compatibility and ignored."""
        return cls.normalize(datetime.now(timezone.utc))

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_before_validator_function(
            lambda value: cls.normalize(value) if isinstance(value, datetime) else value,
            core_schema.datetime_schema(),
        )
