"""Sale request value objects shared by the deduction, availability and queue services."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass
class CartLine:
    """One sold product (optionally a variation, optionally mix & match components)."""

    product_id: str
    quantity: Decimal = Decimal("1")
    variation_id: Optional[str] = None
    components: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.quantity = Decimal(str(self.quantity))
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        self.components = list(self.components or [])

    @property
    def label(self) -> str:
        label = self.product_id if not self.variation_id else f"{self.product_id}/{self.variation_id}"
        if self.components:
            label += f" [{', '.join(self.components)}]"
        return label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "quantity": str(self.quantity),
            "components": list(self.components),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        return cls(
            product_id=str(data["product_id"]),
            quantity=Decimal(str(data.get("quantity", 1))),
            variation_id=data.get("variation_id"),
            components=list(data.get("components") or []),
        )


@dataclass
class SaleRequest:
    """Ephemeral input to a commit: the transaction id is the idempotency key."""

    transaction_id: str
    store_id: int
    lines: List[CartLine]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    online: bool = True
    actor: Optional[str] = None

    def __post_init__(self):
        if not self.transaction_id or not str(self.transaction_id).strip():
            raise ValueError("transaction_id is required")
        if not self.lines:
            raise ValueError("a sale needs at least one cart line")
