"""
Module: bizflow_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the string primary key convention, the type annotation map for
    consistent column types, and the TrackedBase mixin for timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST
    NOT import from models/, domain/, or outer layers.

Invariants enforced:
    - String primary keys: ids are opaque strings (uuid4 by default) so that
      documents created by other systems keep their identifiers.
    - Money precision: Decimal maps to Numeric(18, 2).  NEVER use float for
      amounts.
    - Timestamps are timezone-aware at the type level.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import uuid4

from sqlalchemy import JSON, Date, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a String(36) primary key defaulting to a uuid4 string.
        - Decimal maps to Numeric(18, 2).
        - datetime maps to DateTime(timezone=True).
        - dict / list map to JSON.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        date: Date,
        int: Integer,
        dict[str, Any]: JSON,
        list[str]: JSON,
    }

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)


class TrackedBase(Base):
    """
    Abstract base with created/updated timestamps.

    Guarantees:
        - created_at is set on INSERT and never changes.
        - updated_at is set on INSERT and refreshed on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
