"""Offline queue schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class QueuedDeductionResponse(BaseModel):
    """Queued offline sale."""

    id: int
    transaction_id: str
    store_id: int
    device_id: Optional[str] = None
    actor: Optional[str] = None
    sequence_number: int
    cart_lines: list[dict[str, Any]]
    sale_timestamp: Optional[datetime] = None
    enqueued_at: datetime
    status: str
    attempts: int
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    applied_at: Optional[datetime] = None
    conflict_details: Optional[dict[str, Any]] = None
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReplayResponse(BaseModel):
    """Outcome of a replay run; conflicted items carry their conflict details."""

    applied: int
    applied_transactions: list[str]
    conflicted: list[QueuedDeductionResponse]
    already_applied: list[str]
    remaining: int

    model_config = {"from_attributes": True}


class ResolveConflictRequest(BaseModel):
    strategy: Literal["retry", "partial"] = "retry"
    notes: Optional[str] = Field(None, max_length=1000)


class AbandonRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class QueueStatsResponse(BaseModel):
    store_id: int
    total: int
    by_status: dict[str, int]
    oldest_pending_at: Optional[datetime] = None
