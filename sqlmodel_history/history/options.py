import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from sqlmodel_history.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

OPTION_NAMES = ("tracked_fields", "identity_field", "history_model_name", "history_table_name", "resolve_actor")


def no_actor() -> None:
    """Default actor resolver: mutations are not attributed to anyone."""
    return None


class TrackingOptions(BaseModel):
    """Validated history tracking options for one source model."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    # columns snapshotted on every update
    tracked_fields: Tuple[str, ...]

    # identity column of the source model
    identity_field: str = "id"

    # e.g. "OrderHistory"
    history_model_name: str

    # e.g. "order_history"
    history_table_name: str

    # zero-argument callable returning the actor, or an awaitable of it
    resolve_actor: Callable[[], Any] = no_actor

    @field_validator("tracked_fields", mode="before")
    @classmethod
    def _single_field(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        return value

    @field_validator("tracked_fields")
    @classmethod
    def _unique_fields(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        duplicates = sorted({name for name in value if value.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate tracked fields: {', '.join(duplicates)}")
        return value

    @field_validator("history_model_name", "history_table_name", "identity_field")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


def source_columns(source_model: Type[Any]) -> Tuple[str, ...]:
    """Column attribute names of a mapped model, in declaration order.

    Raises:
        ConfigurationError: If ``source_model`` is not a mapped class.
    """
    try:
        mapper = sa_inspect(source_model)
    except NoInspectionAvailable as e:
        raise ConfigurationError(f"{source_model!r} is not a mapped model class") from e
    return tuple(prop.key for prop in mapper.column_attrs)


def _defaults(source_model: Type[Any]) -> dict:
    return {
        "tracked_fields": source_columns(source_model),
        "identity_field": "id",
        "history_model_name": f"{source_model.__name__}History",
        "history_table_name": f"{source_model.__tablename__}_history",
        "resolve_actor": no_actor,
    }


def resolve_options(source_model: Type[Any], raw: Optional[Any] = None) -> TrackingOptions:
    """Normalizes raw tracking configuration into validated options for ``source_model``.

    Args:
        source_model: The mapped model whose updates will be tracked.
        raw: None for all defaults, a sequence of field names (shorthand for
            ``tracked_fields``), a mapping of option names, or TrackingOptions.

    Returns:
        The validated options.

    Raises:
        ConfigurationError: If the configuration has an unsupported shape or
            references columns the model does not have.
    """
    model_name = getattr(source_model, "__name__", repr(source_model))
    columns = source_columns(source_model)

    if raw is None:
        supplied: dict = {}
    elif isinstance(raw, TrackingOptions):
        supplied = dict(raw)
    elif isinstance(raw, Mapping):
        supplied = dict(raw)
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        supplied = {"tracked_fields": tuple(raw)}
    else:
        raise ConfigurationError(
            f"Unsupported history options for {model_name}: expected None, a sequence of field names, "
            f"a mapping or TrackingOptions, got {type(raw).__name__}",
            model_name=model_name,
        )

    unknown_options = sorted(set(supplied) - set(OPTION_NAMES))
    if unknown_options:
        raise ConfigurationError(
            f"Unknown history option(s) for {model_name}: {', '.join(unknown_options)}", model_name=model_name
        )

    if "resolve_actor" in supplied and not callable(supplied["resolve_actor"]):
        raise ConfigurationError(f"resolve_actor for {model_name} must be callable", model_name=model_name)

    values = _defaults(source_model)
    values.update({key: value for key, value in supplied.items() if value is not None})

    try:
        options = TrackingOptions(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid history options for {model_name}: {e}", model_name=model_name) from e

    if options.identity_field not in columns:
        raise ConfigurationError(
            f"Invalid identity field for model {model_name}: {options.identity_field}", model_name=model_name
        )

    missing = [name for name in options.tracked_fields if name not in columns]
    if missing:
        raise ConfigurationError(
            f"Tracked field(s) not found on model {model_name}: {', '.join(missing)}", model_name=model_name
        )

    logger.debug(f"Resolved history options for {model_name}: tracking {list(options.tracked_fields)}")
    return options
