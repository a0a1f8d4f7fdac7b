"""Explicit post-update callback registry and the mutation pipeline that drives it."""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Tuple, Type

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationEvent:
    """A persisted update of a single mapped instance.

    Attributes:
        session: The session the update was flushed in.
        instance: The updated instance, already carrying its new values.
        previous_values: Every column's value as it was before the update.
        changed_fields: Names of the columns the update altered, in column order.
    """

    session: AsyncSession
    instance: Any
    previous_values: Mapping[str, Any] = field(default_factory=dict)
    changed_fields: Tuple[str, ...] = ()

    @property
    def current_values(self) -> Dict[str, Any]:
        return {key: getattr(self.instance, key) for key in self.previous_values}


MutationCallback = Callable[[MutationEvent], Awaitable[Any]]


def capture_changes(instance: Any) -> Tuple[Dict[str, Any], Tuple[str, ...]]:
    """Reads the pending attribute history of ``instance``.

    Must be called after new values are assigned and before the session is
    flushed; flushing resets attribute history.

    Returns:
        A ``(previous_values, changed_fields)`` pair covering every column attribute.
    """
    state = sa_inspect(instance)
    previous: Dict[str, Any] = {}
    changed = []
    for prop in state.mapper.column_attrs:
        history = state.attrs[prop.key].history
        if history.has_changes():
            changed.append(prop.key)
            previous[prop.key] = history.deleted[0] if history.deleted else None
        else:
            previous[prop.key] = history.unchanged[0] if history.unchanged else None
    return previous, tuple(changed)


class MutationHooks:
    """Registry of named async callbacks invoked after an instance of a model is updated.

    Typical usage:
        hooks = MutationHooks()
        hooks.register(Order, "order_history", writer.write)
        await apply_update(session, order, {"status": "closed"}, hooks)

    Callbacks run one after another in registration order. The first failure is
    logged and re-raised to whoever awaited the mutation.
    """

    def __init__(self) -> None:
        self._listeners: Dict[Type[Any], Dict[str, MutationCallback]] = {}

    def register(self, model: Type[Any], name: str, callback: MutationCallback) -> None:
        """Register a named callback for updates of ``model``.

        Raises:
            ValueError: If a callback with the same name is already registered for the model.
        """
        listeners = self._listeners.setdefault(model, {})
        if name in listeners:
            raise ValueError(f"Callback '{name}' is already registered for {model.__name__}")
        listeners[name] = callback

    def unregister(self, model: Type[Any], name: str) -> None:
        """Remove a registered callback.

        Raises:
            KeyError: If no callback with the given name exists for the model.
        """
        del self._listeners[model][name]
        if not self._listeners[model]:
            del self._listeners[model]

    def listeners(self, model: Type[Any]) -> Mapping[str, MutationCallback]:
        """Return a read-only view of the callbacks registered for ``model``."""
        return MappingProxyType(dict(self._listeners.get(model, {})))

    async def dispatch(self, event: MutationEvent) -> None:
        model = type(event.instance)
        for name, callback in list(self._listeners.get(model, {}).items()):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Mutation callback '{name}' failed for {model.__name__}: {e}")
                raise


async def apply_update(
    session: AsyncSession,
    instance: Any,
    values: Mapping[str, Any],
    hooks: MutationHooks,
    *,
    commit: bool = True,
) -> Any:
    """Assigns ``values`` to ``instance``, flushes the update and runs the post-update callbacks.

    An update that changes no column is a no-op: nothing is flushed and no
    callback runs. When a callback fails and ``commit`` is True the session is
    rolled back, so the update and everything the callbacks wrote are discarded
    together. With ``commit`` False the error propagates with the transaction
    untouched and rolling back is up to the caller.

    Args:
        session: The session ``instance`` belongs to.
        instance: A persistent mapped instance.
        values: Column attribute names mapped to their new values.
        hooks: The callback registry to dispatch to.
        commit: Commit once callbacks succeed and roll back when one fails; pass False to
            leave transaction control, including rollback, to the caller.

    Returns:
        The updated instance.

    Raises:
        AttributeError: If ``values`` names something that is not a column attribute.
    """
    state = sa_inspect(instance)
    column_keys = {prop.key for prop in state.mapper.column_attrs}
    unknown = sorted(set(values) - column_keys)
    if unknown:
        raise AttributeError(f"{type(instance).__name__} has no column attribute(s): {', '.join(unknown)}")

    unloaded = state.unloaded & column_keys
    if unloaded and state.persistent:
        await session.refresh(instance, attribute_names=sorted(unloaded))

    for key, value in values.items():
        setattr(instance, key, value)

    previous, changed = capture_changes(instance)
    if not changed:
        logger.debug(f"Update of {type(instance).__name__} changed nothing; skipping callbacks.")
        return instance

    event = MutationEvent(session=session, instance=instance, previous_values=previous, changed_fields=changed)
    try:
        await session.flush()
        await hooks.dispatch(event)
        if commit:
            await session.commit()
    except Exception:
        if commit:
            await session.rollback()
        raise
    return instance
