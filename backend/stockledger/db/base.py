"""SQLAlchemy declarative base and common utilities."""

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

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


class ActiveFlagMixin:
    """Deactivation instead of deletion.

    Inventory rows are referenced by the movement ledger, so they are never
    physically removed. Use ``active_only()`` as a query filter.
    """

    is_active: Mapped[bool] = mapped_column(
        default=True, server_default="1", nullable=False, index=True,
    )

    @classmethod
    def active_only(cls):
        """SQLAlchemy filter expression: ``WHERE is_active = TRUE``."""
        return cls.is_active.is_(True)
