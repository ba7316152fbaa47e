# stock.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bson import ObjectId

from errors import ApiError, ValidationError
from customers import now_utc

logger = logging.getLogger("etms.stock")

APPLIED = "applied"
SKIPPED_INVALID_ID = "skipped_invalid_id"
SKIPPED_INVALID_QUANTITY = "skipped_invalid_quantity"
NOT_FOUND = "not_found"
SKIPPED_ERROR = "skipped_error"
OUTCOMES = (APPLIED, SKIPPED_INVALID_ID, SKIPPED_INVALID_QUANTITY, NOT_FOUND, SKIPPED_ERROR)


def stock_status(quantity: int) -> str:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= 20:
        return "low"
    if quantity <= 40:
        return "medium"
    return "healthy"


@dataclass
class ItemOutcome:
    index: int
    product_id: Any
    outcome: str
    quantity: Optional[int] = None
    product_name: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "index": self.index,
            "productId": self.product_id if isinstance(self.product_id, str) else None,
            "outcome": self.outcome,
        }
        if self.outcome == APPLIED:
            out["productName"] = self.product_name
            out["newQuantity"] = self.quantity
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BulkUpdateResult:
    items: List[ItemOutcome] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        counts = {o: 0 for o in OUTCOMES}
        for item in self.items:
            counts[item.outcome] += 1
        return counts

    @property
    def applied(self) -> List[ItemOutcome]:
        return [i for i in self.items if i.outcome == APPLIED]

    @property
    def partial_failure(self) -> bool:
        return any(i.outcome != APPLIED for i in self.items)


class StockService:
    def __init__(self, repository, low_stock_threshold: int = 10):
        self.repository = repository
        self.low_stock_threshold = low_stock_threshold

    def status(self) -> List[Dict[str, Any]]:
        rows = []
        for p in self.repository.active_products():
            quantity = p.get("quantity") or 0
            rows.append(
                {
                    "id": str(p["_id"]),
                    "name": p.get("name", ""),
                    "sku": p.get("productCode") or p.get("sku"),
                    "quantity": quantity,
                    "price": p.get("price") or 0,
                    "status": stock_status(quantity),
                    "images": p.get("images") or [],
                    "sizes": p.get("sizes") or [],
                    "colors": p.get("colors") or [],
                    "createdAt": p.get("createdAt"),
                    "updatedAt": p.get("updatedAt"),
                }
            )
        return rows

    def low_stock(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": str(p["_id"]),
                "name": p.get("name", ""),
                "quantity": p.get("quantity", 0),
                "threshold": self.low_stock_threshold,
            }
            for p in self.repository.low_stock_products(self.low_stock_threshold)
        ]

    def bulk_update(self, updates: Any) -> BulkUpdateResult:
        """Apply each {productId, quantity} independently and record what happened."""
        if not isinstance(updates, list):
            raise ValidationError("Updates array is required", details={"field": "updates"})

        result = BulkUpdateResult()
        for index, update in enumerate(updates):
            update = update if isinstance(update, dict) else {}
            raw_id = update.get("productId")
            quantity = update.get("quantity")

            if not isinstance(raw_id, str) or not ObjectId.is_valid(raw_id):
                result.items.append(ItemOutcome(index, raw_id, SKIPPED_INVALID_ID))
                continue
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                result.items.append(ItemOutcome(index, raw_id, SKIPPED_INVALID_QUANTITY))
                continue

            try:
                product = self.repository.set_product_quantity(ObjectId(raw_id), quantity, now_utc())
            except ApiError as e:
                logger.warning("Bulk stock update failed for %s: %s", raw_id, e.message)
                result.items.append(ItemOutcome(index, raw_id, SKIPPED_ERROR, error=e.message))
                continue

            if product is None:
                result.items.append(ItemOutcome(index, raw_id, NOT_FOUND))
            else:
                result.items.append(
                    ItemOutcome(index, raw_id, APPLIED, quantity=quantity, product_name=product.get("name"))
                )

        logger.info("Bulk stock update: %s", result.counts())
        return result
