"""Derives the shape of a history table from a source model and its tracking options."""

import logging
import types
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Type

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import NullType, TypeEngine
from sqlmodel import Field

from sqlmodel_history.db.naive_datetime import NaiveDatetime
from sqlmodel_history.db.types import JsonBOrJson
from sqlmodel_history.exceptions import SchemaError
from sqlmodel_history.history.models import HistoryRecordBase
from sqlmodel_history.history.options import TrackingOptions

logger = logging.getLogger(__name__)

HISTORY_ID = "history_id"
SOURCE_ID = "source_id"
REVISION = "revision"
ACTOR = "actor"
CAPTURED_AT = "captured_at"
CHANGED_FIELDS = "changed_fields"

BOOKKEEPING_FIELDS = (HISTORY_ID, SOURCE_ID, REVISION, ACTOR, CAPTURED_AT, CHANGED_FIELDS)


@dataclass(frozen=True)
class ColumnSpec:
    """One column of a history table.

    ``sql_type`` is excluded from comparisons; ``type_repr`` stands in for it so
    two derivations from the same source compare equal.
    """

    name: str
    sql_type: TypeEngine = field(compare=False, repr=False)
    type_repr: str
    python_type: Any
    nullable: bool = True
    primary_key: bool = False

    def to_column(self) -> Column:
        return Column(
            self.name,
            self.sql_type,
            primary_key=self.primary_key,
            autoincrement=True if self.primary_key else "auto",
            nullable=self.nullable,
        )


@dataclass(frozen=True)
class HistorySchema:
    """Descriptor of a history table, ready to be materialised with ``create_history_model``."""

    model_name: str
    table_name: str
    identity_field: str
    tracked_fields: Tuple[str, ...]
    columns: Tuple[ColumnSpec, ...]
    unique_constraint: Tuple[str, ...] = (SOURCE_ID, REVISION)
    index: Tuple[str, ...] = (SOURCE_ID,)

    @property
    def unique_constraint_name(self) -> str:
        return f"uq_{self.table_name}_{'_'.join(self.unique_constraint)}"

    @property
    def index_name(self) -> str:
        return f"ix_{self.table_name}_{'_'.join(self.index)}"

    def column(self, name: str) -> ColumnSpec:
        for spec in self.columns:
            if spec.name == name:
                return spec
        raise KeyError(name)


def _python_type(sql_type: TypeEngine) -> Optional[type]:
    try:
        return sql_type.python_type
    except NotImplementedError:
        return None


def _spec(name: str, sql_type: TypeEngine, python_type: Any, **kwargs: Any) -> ColumnSpec:
    return ColumnSpec(name=name, sql_type=sql_type, type_repr=repr(sql_type), python_type=python_type, **kwargs)


def build_history_schema(source_model: Type[Any], options: TrackingOptions) -> HistorySchema:
    """Builds the history table descriptor for ``source_model``.

    Bookkeeping columns come first, followed by one nullable column per tracked
    field carrying the source column's SQL type.

    Raises:
        SchemaError: If the identity column's type cannot be stored, or a tracked
            field collides with a bookkeeping column.
    """
    mapper = sa_inspect(source_model)
    identity_column = mapper.column_attrs[options.identity_field].columns[0]
    identity_type = identity_column.type

    identity_python_type = _python_type(identity_type)
    if isinstance(identity_type, NullType) or identity_python_type is None:
        raise SchemaError(
            f"Unsupported type {identity_type!r} for identity field "
            f"{source_model.__name__}.{options.identity_field}"
        )

    collisions = [name for name in options.tracked_fields if name in BOOKKEEPING_FIELDS]
    if collisions:
        raise SchemaError(
            f"Tracked field(s) of {source_model.__name__} collide with history bookkeeping columns: "
            f"{', '.join(collisions)}"
        )

    columns: List[ColumnSpec] = [
        _spec(HISTORY_ID, Integer(), int, nullable=False, primary_key=True),
        _spec(SOURCE_ID, identity_type.copy(), identity_python_type, nullable=False),
        _spec(REVISION, Integer(), int, nullable=False),
        _spec(ACTOR, String(), str),
        _spec(CAPTURED_AT, DateTime(), NaiveDatetime, nullable=False),
        _spec(CHANGED_FIELDS, JsonBOrJson(), List[str], nullable=False),
    ]
    for name in options.tracked_fields:
        source_column = mapper.column_attrs[name].columns[0]
        sql_type = source_column.type.copy()
        columns.append(_spec(name, sql_type, _python_type(sql_type) or Any))

    return HistorySchema(
        model_name=options.history_model_name,
        table_name=options.history_table_name,
        identity_field=options.identity_field,
        tracked_fields=options.tracked_fields,
        columns=tuple(columns),
    )


def _field_for(spec: ColumnSpec) -> Any:
    if spec.name == CAPTURED_AT:
        return Field(default_factory=NaiveDatetime.now, sa_column=spec.to_column())
    if spec.name == CHANGED_FIELDS:
        return Field(default_factory=list, sa_column=spec.to_column())
    return Field(default=None, sa_column=spec.to_column())


def _annotation_for(spec: ColumnSpec) -> Any:
    if spec.name in (CAPTURED_AT, CHANGED_FIELDS):
        return spec.python_type
    return Optional[spec.python_type]


def create_history_model(schema: HistorySchema) -> Type[HistoryRecordBase]:
    """Materialises ``schema`` as a SQLModel table class registered in ``SQLModel.metadata``.

    Raises:
        SchemaError: If SQLAlchemy or SQLModel reject the derived table, for
            example because a table with the same name is already defined.
    """
    annotations = {spec.name: _annotation_for(spec) for spec in schema.columns}

    def exec_body(namespace: dict) -> None:
        namespace["__module__"] = __name__
        namespace["__tablename__"] = schema.table_name
        namespace["__annotations__"] = annotations
        namespace["__table_args__"] = (
            UniqueConstraint(*schema.unique_constraint, name=schema.unique_constraint_name),
            Index(schema.index_name, *schema.index),
        )
        for spec in schema.columns:
            namespace[spec.name] = _field_for(spec)

    try:
        history_model = types.new_class(schema.model_name, (HistoryRecordBase,), {"table": True}, exec_body)
    except (SQLAlchemyError, TypeError, ValueError) as e:
        logger.error(f"Failed to register history model {schema.model_name}: {e}")
        raise SchemaError(f"Could not register history model {schema.model_name}: {e}") from e

    history_model.history_schema = schema
    logger.info(f"Registered history model {schema.model_name} (table {schema.table_name})")
    return history_model
