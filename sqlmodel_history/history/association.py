import logging
from typing import Any, Type

from sqlalchemy import Column, ForeignKeyConstraint, Table, UniqueConstraint
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import relationship

from sqlmodel_history.exceptions import AssociationError
from sqlmodel_history.history.options import TrackingOptions
from sqlmodel_history.history.schema import SOURCE_ID

logger = logging.getLogger(__name__)

SOURCE_RELATIONSHIP = "source"


def _is_unique_key(table: Table, column: Column) -> bool:
    if column.primary_key or column.unique:
        return True
    return any(
        isinstance(constraint, UniqueConstraint) and [c.name for c in constraint.columns] == [column.name]
        for constraint in table.constraints
    )


def bind_source(history_model: Type[Any], source_model: Type[Any], options: TrackingOptions) -> Type[Any]:
    """Declares that history rows belong to a source row and are deleted with it.

    Adds ``FOREIGN KEY (source_id) REFERENCES <source>(<identity>) ON DELETE CASCADE``
    to the history table and a view-only ``source`` relationship to the history
    mapper. Cascading is left to the database.

    Returns:
        The history model.

    Raises:
        AssociationError: If the key types are incompatible, the identity column is not a
            primary or unique key, or SQLAlchemy rejects the declaration.
    """
    history_table = history_model.__table__
    source_table = source_model.__table__
    source_key = source_table.columns.get(options.identity_field)
    history_key = history_table.columns.get(SOURCE_ID)

    if source_key is None or history_key is None:
        raise AssociationError(
            f"Cannot associate {history_model.__name__} with {source_model.__name__}: "
            f"missing {SOURCE_ID} or {options.identity_field} column"
        )

    if history_key.type._type_affinity is not source_key.type._type_affinity:
        raise AssociationError(
            f"Incompatible key types: {history_table.name}.{SOURCE_ID} is {history_key.type!r}, "
            f"{source_table.name}.{source_key.name} is {source_key.type!r}"
        )

    if not _is_unique_key(source_table, source_key):
        raise AssociationError(
            f"{source_table.name}.{source_key.name} cannot be referenced by {history_table.name}: "
            f"it is neither the primary key nor unique"
        )

    try:
        history_table.append_constraint(
            ForeignKeyConstraint(
                [SOURCE_ID],
                [source_key],
                name=f"fk_{history_table.name}_{SOURCE_ID}",
                ondelete="CASCADE",
            )
        )
        sa_inspect(history_model).add_property(
            SOURCE_RELATIONSHIP,
            relationship(
                source_model,
                primaryjoin=history_key == source_key,
                foreign_keys=[history_key],
                viewonly=True,
            ),
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to associate {history_model.__name__} with {source_model.__name__}: {e}")
        raise AssociationError(
            f"Could not associate {history_model.__name__} with {source_model.__name__}: {e}"
        ) from e

    logger.info(f"Associated {history_model.__name__} with {source_model.__name__} (on delete cascade)")
    return history_model
