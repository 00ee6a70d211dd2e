"""Declarative base and shared column types for the signal engine tables.

Constraint names follow a fixed pattern so migrations can address them.
"""

from sqlalchemy import MetaData, Numeric
from sqlalchemy.orm import DeclarativeBase

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Metric values and thresholds are arbitrary-precision decimals
DECIMAL_TYPE = Numeric(28, 10, asdecimal=True)


class Base(DeclarativeBase):
    """Root of every signal engine ORM model."""

    metadata = MetaData(naming_convention=convention)
