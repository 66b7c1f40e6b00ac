"""
SQLAlchemy 2.0 async DeclarativeBase for Cardshelf.

All models inherit from this Base. Constraint and index names follow a fixed
convention so they line up with the alembic version scripts.
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for the card and profile tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
