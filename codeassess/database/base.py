"""
SQLAlchemy Base Configuration

Declarative base for the assessment tables. Constraint names follow one
convention so that migrations can refer to them.
"""

from typing import Any, Mapping

from sqlalchemy import MetaData, inspect
from sqlalchemy.orm import declarative_base

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

Base = declarative_base(metadata=metadata)


class ModelBase(Base):
    """Base class for the assessment tables."""

    __abstract__ = True

    def update(self, values: Mapping[str, Any]) -> None:
        """
        Assign column values from a mapping.

        Raises:
            KeyError: If a key is not a column of the table
        """
        columns = self.__table__.columns
        for key, value in values.items():
            if key not in columns:
                raise KeyError(f"{self.__tablename__} has no column {key}")
            setattr(self, key, value)

    def __repr__(self) -> str:
        identity = inspect(self).identity
        return f"<{type(self).__name__} {identity if identity else 'transient'}>"
