"""SQLAlchemy ORM models for the expense tracker.

Every table extends :class:`BaseEntity`, which carries:

- a client-generated, time-ordered UUID v7 primary key, assigned when the
  object is constructed rather than when it is flushed;
- the ``is_deleted`` soft-delete flag;
- the four audit columns stamped by the persistence context at commit.

Relationships:
    Category 1--* Expense  (category_id foreign key, nullable)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

from myexpenses.core.ids import new_id

from .types import UTCDateTime


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


class BaseEntity(Base):
    """Abstract base for every persisted domain record.

    ``created_*`` and ``updated_*`` stay ``None`` until the first commit;
    application code should not assign them.
    """

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_id)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    updated_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("id", new_id())
        kwargs.setdefault("is_deleted", False)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id!s}, is_deleted={self.is_deleted!r})>"
        )


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------

class Category(BaseEntity):
    """User-defined grouping for expenses (groceries, rent, ...)."""

    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    expenses: Mapped[list[Expense]] = relationship(
        "Expense",
        back_populates="category",
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id!s}, name={self.name!r})>"


# ---------------------------------------------------------------------------
# Expense
# ---------------------------------------------------------------------------

class Expense(BaseEntity):
    """A single spend."""

    __tablename__ = "expenses"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    spent_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("categories.id"), nullable=True,
    )

    category: Mapped[Category | None] = relationship(
        "Category",
        back_populates="expenses",
    )

    __table_args__ = (
        Index("ix_expenses_spent_on", "spent_on"),
        Index("ix_expenses_category_id", "category_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Expense(id={self.id!s}, name={self.name!r}, "
            f"amount={self.amount!r}, is_deleted={self.is_deleted!r})>"
        )
