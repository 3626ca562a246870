"""
Offline queue model - sale deductions captured while a terminal was offline.

Rows are replayed strictly by ``sequence_number`` within a store. The
original transaction id is kept, so replay is idempotent against the
deduction executor's ledger check even if the queue bookkeeping is lost
mid-replay.

State machine::

    pending -> applied
    pending -> conflicted -> resolved
                          -> abandoned
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from stockledger.db.base import Base
from stockledger.models.validators import validate_list_of_dicts


class QueueStatus(str, enum.Enum):
    """Replay status of a queued deduction."""
    PENDING = "pending"
    APPLIED = "applied"
    CONFLICTED = "conflicted"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


SETTLED_STATUSES = (QueueStatus.APPLIED.value, QueueStatus.RESOLVED.value, QueueStatus.ABANDONED.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueuedDeduction(Base):
    """A SaleRequest captured offline, waiting to be replayed."""

    __tablename__ = "queued_deductions"
    __table_args__ = (
        UniqueConstraint("store_id", "sequence_number", name="uq_queued_deduction_store_sequence"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Serialized cart lines: [{"product_id", "variation_id", "quantity", "components"}]
    cart_lines: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    sale_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=QueueStatus.PENDING.value, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Conflict and resolution
    conflict_details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # retry, partial, abandon
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @validates("cart_lines")
    def _validate_cart_lines(self, key, value):
        return validate_list_of_dicts(key, value)

    def __repr__(self) -> str:
        return f"<QueuedDeduction {self.transaction_id} #{self.sequence_number} {self.status}>"
