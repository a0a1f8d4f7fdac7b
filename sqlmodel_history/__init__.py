"""Append-only revision history for SQLModel table models."""

from sqlmodel_history.core.hooks import MutationEvent, MutationHooks, apply_update
from sqlmodel_history.exceptions import (
    ActorResolutionError,
    AssociationError,
    ConfigurationError,
    HistoryException,
    NotFoundError,
    PersistenceError,
    ReentrantMutationError,
    SchemaError,
)
from sqlmodel_history.history.models import HistoryRecordBase
from sqlmodel_history.history.options import TrackingOptions, resolve_options
from sqlmodel_history.history.tracker import HistoryTracker, track_history

__all__ = [
    "ActorResolutionError",
    "AssociationError",
    "ConfigurationError",
    "HistoryException",
    "HistoryRecordBase",
    "HistoryTracker",
    "MutationEvent",
    "MutationHooks",
    "NotFoundError",
    "PersistenceError",
    "ReentrantMutationError",
    "SchemaError",
    "TrackingOptions",
    "apply_update",
    "resolve_options",
    "track_history",
]
