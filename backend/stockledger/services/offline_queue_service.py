"""
Offline Queue & Replay Reconciler

Sales rung up while a terminal was offline are queued with their original
transaction id and replayed in capture order once connectivity returns.

- Replay walks a store's pending items strictly by ``sequence_number``
- A conflict (insufficient stock, broken recipe data) parks that item as
  ``conflicted`` and replay moves on to the next one
- An unexpected error stops the replay; the item stays pending with its
  attempt counter bumped and is picked up again next time
- Replay is resumable after a crash: the executor's ledger check turns an
  already-deducted transaction into a no-op, which is then marked applied

Conflicts are settled by an operator (retry, partial, abandon).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    InvalidQueueTransition,
    QueuedDeductionNotFound,
    StockLedgerError,
)
from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.offline_queue import QueuedDeduction, QueueStatus, SETTLED_STATUSES
from stockledger.services.availability_service import AvailabilityService
from stockledger.services.deduction_service import CommitResult, DeductionExecutor
from stockledger.services.sales import CartLine, SaleRequest

logger = logging.getLogger(__name__)

RESOLUTION_STRATEGIES = ("retry", "partial")


@dataclass
class ReplayResult:
    """Summary of one replay run.

    ``applied`` counts newly deducted sales; their ids are in
    ``applied_transactions``. Conflicted rows are returned whole so their
    ``conflict_details`` reach the operator.
    """

    applied: int = 0
    applied_transactions: List[str] = field(default_factory=list)
    conflicted: List[QueuedDeduction] = field(default_factory=list)
    already_applied: List[str] = field(default_factory=list)
    remaining: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OfflineQueueService:
    """Queue bookkeeping and FIFO replay of offline sales."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)
        self.executor = DeductionExecutor(db, self.repository)
        self.availability = AvailabilityService(db, self.repository)

    # ===== QUEUE =====

    def enqueue(self, request: SaleRequest, device_id: Optional[str] = None) -> QueuedDeduction:
        """Queue an offline sale; re-queuing the same transaction returns the existing row."""
        existing = self.find(request.transaction_id)
        if existing is not None:
            logger.info(f"Transaction {request.transaction_id} already queued (#{existing.sequence_number})")
            return existing

        item = QueuedDeduction(
            transaction_id=request.transaction_id,
            store_id=request.store_id,
            device_id=device_id,
            actor=request.actor,
            sequence_number=self._next_sequence(request.store_id),
            cart_lines=[line.to_dict() for line in request.lines],
            sale_timestamp=request.timestamp,
            status=QueueStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)

        logger.info(
            f"Queued offline sale {item.transaction_id} for store {item.store_id} "
            f"as #{item.sequence_number}"
        )
        return item

    def find(self, transaction_id: str) -> Optional[QueuedDeduction]:
        return self.db.scalar(select(QueuedDeduction).where(QueuedDeduction.transaction_id == transaction_id))

    def get(self, transaction_id: str) -> QueuedDeduction:
        item = self.find(transaction_id)
        if item is None:
            raise QueuedDeductionNotFound(transaction_id)
        return item

    def list_queue(
        self,
        store_id: int,
        statuses: Optional[Iterable[str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[QueuedDeduction]:
        stmt = select(QueuedDeduction).where(QueuedDeduction.store_id == store_id)
        if statuses:
            stmt = stmt.where(QueuedDeduction.status.in_([QueueStatus(s).value for s in statuses]))
        stmt = stmt.order_by(QueuedDeduction.sequence_number).offset(offset).limit(limit)
        return list(self.db.scalars(stmt).all())

    def cancel(self, transaction_id: str) -> None:
        """Withdraw a pending item before replay. No stock or ledger side effects."""
        item = self.get(transaction_id)
        if item.status != QueueStatus.PENDING.value:
            raise InvalidQueueTransition(transaction_id, item.status, "cancel")
        self.db.delete(item)
        self.db.commit()
        logger.info(f"Cancelled queued transaction {transaction_id}")

    # ===== REPLAY =====

    def replay(self, store_id: int, actor: Optional[str] = None, limit: Optional[int] = None) -> ReplayResult:
        """Replay the store's pending items in sequence order.

        Conflicts are recorded and skipped. Any other error propagates after
        the failing item's attempt is recorded; it stays pending.
        """
        batch_size = limit or settings.offline_replay_batch_size
        pending = self.db.scalars(
            select(QueuedDeduction)
            .where(
                QueuedDeduction.store_id == store_id,
                QueuedDeduction.status == QueueStatus.PENDING.value,
            )
            .order_by(QueuedDeduction.sequence_number)
            .limit(batch_size)
        ).all()

        result = ReplayResult()
        for item in pending:
            if item.attempts >= settings.offline_max_replay_attempts:
                self._mark_conflicted(item, {
                    "error": "max_attempts_exceeded",
                    "message": f"Gave up after {item.attempts} attempts: {item.last_error}",
                })
                result.conflicted.append(item)
                continue

            item.attempts += 1
            item.last_attempt_at = _utcnow()
            self.db.commit()

            try:
                commit = self._commit(item, actor)
            except StockLedgerError as e:
                self._mark_conflicted(item, e.to_dict())
                result.conflicted.append(item)
                continue
            except Exception as e:
                self.db.rollback()
                item.last_error = str(e)[:1000]
                self.db.commit()
                logger.error(f"Replay of {item.transaction_id} failed unexpectedly, stopping: {e}")
                raise

            item.status = QueueStatus.APPLIED.value
            item.applied_at = _utcnow()
            item.last_error = None
            self.db.commit()
            if commit.already_applied:
                result.already_applied.append(item.transaction_id)
            else:
                result.applied += 1
                result.applied_transactions.append(item.transaction_id)

        result.remaining = self.db.scalar(
            select(func.count(QueuedDeduction.id)).where(
                QueuedDeduction.store_id == store_id,
                QueuedDeduction.status == QueueStatus.PENDING.value,
            )
        )

        logger.info(
            f"Replay for store {store_id}: applied={result.applied}, "
            f"already_applied={len(result.already_applied)}, conflicted={len(result.conflicted)}, "
            f"remaining={result.remaining}"
        )
        return result

    # ===== CONFLICT RESOLUTION =====

    def resolve_conflict(
        self,
        transaction_id: str,
        actor: Optional[str] = None,
        strategy: str = "retry",
        notes: Optional[str] = None,
    ) -> QueuedDeduction:
        """Settle a conflicted item.

        ``retry`` re-commits the whole sale. ``partial`` commits only the cart
        lines that current stock covers, in their original order, and records
        the dropped ones. A failed attempt leaves the item conflicted and
        re-raises.
        """
        if strategy not in RESOLUTION_STRATEGIES:
            raise ValueError(f"Unknown resolution strategy '{strategy}'")

        item = self.get(transaction_id)
        if item.status != QueueStatus.CONFLICTED.value:
            raise InvalidQueueTransition(transaction_id, item.status, "resolve")

        lines = self._cart_lines(item)
        dropped: List[Dict[str, Any]] = []
        if strategy == "partial":
            lines, dropped = self._satisfiable_lines(item.store_id, lines)

        try:
            if lines:
                self.executor.commit_sale(item.transaction_id, item.store_id, lines, actor=actor or item.actor)
        except StockLedgerError as e:
            self._mark_conflicted(item, e.to_dict())
            raise

        details = dict(item.conflict_details or {})
        if dropped:
            details["dropped_lines"] = dropped
        item.conflict_details = details
        item.status = QueueStatus.RESOLVED.value
        item.resolution = strategy
        item.resolution_notes = notes
        item.resolved_by = actor
        item.resolved_at = _utcnow()
        item.applied_at = _utcnow()
        self.db.commit()

        logger.info(
            f"Resolved queued transaction {transaction_id} by {strategy} "
            f"({len(lines)} lines committed, {len(dropped)} dropped)"
        )
        return item

    def abandon(self, transaction_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> QueuedDeduction:
        """Give up on a conflicted item; its stock is never deducted."""
        item = self.get(transaction_id)
        if item.status != QueueStatus.CONFLICTED.value:
            raise InvalidQueueTransition(transaction_id, item.status, "abandon")

        item.status = QueueStatus.ABANDONED.value
        item.resolution = "abandon"
        item.resolution_notes = notes
        item.resolved_by = actor
        item.resolved_at = _utcnow()
        self.db.commit()

        logger.warning(f"Abandoned queued transaction {transaction_id} (by {actor or 'unknown'})")
        return item

    # ===== HOUSEKEEPING =====

    def queue_stats(self, store_id: int) -> Dict[str, Any]:
        rows = self.db.execute(
            select(QueuedDeduction.status, func.count(QueuedDeduction.id))
            .where(QueuedDeduction.store_id == store_id)
            .group_by(QueuedDeduction.status)
        ).all()
        counts = {status.value: 0 for status in QueueStatus}
        for status, count in rows:
            counts[status] = count

        oldest_pending = self.db.scalar(
            select(func.min(QueuedDeduction.enqueued_at)).where(
                QueuedDeduction.store_id == store_id,
                QueuedDeduction.status == QueueStatus.PENDING.value,
            )
        )
        return {
            "store_id": store_id,
            "total": sum(counts.values()),
            "by_status": counts,
            "oldest_pending_at": oldest_pending,
        }

    def purge_settled(self, store_id: int, older_than: Optional[datetime] = None) -> int:
        """Delete applied, resolved and abandoned rows. Returns the number removed."""
        stmt = delete(QueuedDeduction).where(
            QueuedDeduction.store_id == store_id,
            QueuedDeduction.status.in_(SETTLED_STATUSES),
        )
        if older_than is not None:
            stmt = stmt.where(QueuedDeduction.enqueued_at < older_than)
        removed = self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount
        self.db.commit()
        logger.info(f"Purged {removed} settled queue rows for store {store_id}")
        return removed

    # ===== HELPERS =====

    def _next_sequence(self, store_id: int) -> int:
        current = self.db.scalar(
            select(func.max(QueuedDeduction.sequence_number)).where(QueuedDeduction.store_id == store_id)
        )
        return (current or 0) + 1

    @staticmethod
    def _cart_lines(item: QueuedDeduction) -> List[CartLine]:
        return [CartLine.from_dict(line) for line in item.cart_lines]

    def _commit(self, item: QueuedDeduction, actor: Optional[str]) -> CommitResult:
        return self.executor.commit_sale(
            item.transaction_id, item.store_id, self._cart_lines(item), actor=item.actor or actor
        )

    def _mark_conflicted(self, item: QueuedDeduction, details: Dict[str, Any]) -> None:
        item.status = QueueStatus.CONFLICTED.value
        item.conflict_details = details
        item.last_error = details.get("message")
        self.db.commit()
        logger.warning(
            f"Queued transaction {item.transaction_id} (#{item.sequence_number}) conflicted: "
            f"{details.get('message')}"
        )

    def _satisfiable_lines(self, store_id: int, lines: List[CartLine]):
        """Greedy prefix-order selection of cart lines current stock can cover together."""
        accepted: List[CartLine] = []
        dropped: List[Dict[str, Any]] = []
        for line in lines:
            try:
                check = self.availability.check_availability(store_id, accepted + [line])
            except StockLedgerError as e:
                dropped.append({**line.to_dict(), "reason": e.code})
                continue
            if check.available:
                accepted.append(line)
            else:
                dropped.append({**line.to_dict(), "reason": "insufficient_stock"})
        return accepted, dropped
