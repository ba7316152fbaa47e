# customers.py
"""
Customer directory built from order records.

There is no customer-aggregate collection: every listing, lookup and
analytics call regroups the settled orders by buyer email, classifies each
group and throws the result away. The standalone customer records (created
through the admin API) live in their own collection and are never reconciled
with the order-derived view.
"""
from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from address import COUNTRY, standardize_address, validate_address
from errors import NotFound, ValidationError
from repository import SETTLED_PAYMENT_STATUSES

logger = logging.getLogger("etms.customers")

VIP = "VIP"
LOYAL = "Loyal"
REGULAR = "Regular"
NEW = "New"
SEGMENTS = (VIP, LOYAL, REGULAR, NEW)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """Stored dates may come back naive (pymongo default); treat those as UTC.

    Aware values in other zones are converted so month boundaries stay UTC.
    """
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round2(value: float) -> float:
    """Round half-up to cents; binary floats are rounded by their repr."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Return (start of this month, start of last month) in UTC."""
    now = as_utc(now)
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if this_month.month == 1:
        last_month = this_month.replace(year=this_month.year - 1, month=12)
    else:
        last_month = this_month.replace(month=this_month.month - 1)
    return this_month, last_month


# -------------------------
# Classification
# -------------------------
@dataclass(frozen=True)
class SegmentThresholds:
    vip_spend: float = 500.0
    loyal_orders: int = 5
    regular_orders: int = 2


DEFAULT_THRESHOLDS = SegmentThresholds()


def classify(total_spent: float, total_orders: int, thresholds: SegmentThresholds = DEFAULT_THRESHOLDS) -> str:
    # Rules overlap, so the order of the checks is the rule.
    if total_spent >= thresholds.vip_spend:
        return VIP
    if total_orders >= thresholds.loyal_orders:
        return LOYAL
    if total_orders >= thresholds.regular_orders:
        return REGULAR
    return NEW


# -------------------------
# Aggregation
# -------------------------
def buyer_email(order: Dict[str, Any]) -> str:
    info = order.get("customerInfo") or {}
    email = info.get("email")
    return email if isinstance(email, str) else ""


def is_settled(order: Dict[str, Any]) -> bool:
    return order.get("paymentStatus") in SETTLED_PAYMENT_STATUSES


def order_total(order: Dict[str, Any]) -> float:
    try:
        return float(order.get("total") or 0)
    except (TypeError, ValueError):
        return 0.0


def _order_time(order: Dict[str, Any]) -> datetime:
    return as_utc(order.get("createdAt")) or _OLDEST


@dataclass
class CustomerAggregate:
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    total_orders: int = 0
    total_spent: float = 0.0
    first_order_date: Optional[datetime] = None
    last_order_date: Optional[datetime] = None
    customer_type: str = NEW
    orders: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def average_order_value(self) -> float:
        return round2(self.total_spent / self.total_orders) if self.total_orders else 0.0

    def add(self, order: Dict[str, Any]) -> None:
        self.total_orders += 1
        self.total_spent += order_total(order)
        created = as_utc(order.get("createdAt"))
        if created is not None:
            if self.first_order_date is None or created < self.first_order_date:
                self.first_order_date = created
            if self.last_order_date is None or created > self.last_order_date:
                self.last_order_date = created
        self.orders.append(order)


def aggregate_customers(
    orders: Iterable[Dict[str, Any]],
    thresholds: SegmentThresholds = DEFAULT_THRESHOLDS,
) -> List[CustomerAggregate]:
    """Group settled orders by buyer email and classify each group.

    Name, phone and address are taken from the first order seen for an email,
    so they depend on input order. Totals and dates do not. Each group's
    orders are returned newest first.
    """
    groups: Dict[str, CustomerAggregate] = {}
    for order in orders:
        if not is_settled(order):
            continue
        email = buyer_email(order)
        if not email:
            continue
        agg = groups.get(email)
        if agg is None:
            info = order.get("customerInfo") or {}
            agg = groups[email] = CustomerAggregate(
                email=email,
                name=info.get("name"),
                phone=info.get("phone"),
                address=info.get("address"),
            )
        agg.add(order)

    for agg in groups.values():
        agg.orders.sort(key=_order_time, reverse=True)
        agg.customer_type = classify(agg.total_spent, agg.total_orders, thresholds)
    return list(groups.values())


@dataclass
class FleetAnalytics:
    total_customers: int = 0
    total_revenue: float = 0.0
    total_orders: int = 0
    new_customers_this_month: int = 0
    new_customers_last_month: int = 0
    customers_by_type: Dict[str, int] = field(default_factory=lambda: {s.lower(): 0 for s in SEGMENTS})

    @property
    def average_order_value(self) -> float:
        return round2(self.total_revenue / self.total_orders) if self.total_orders else 0.0


def summarize(aggregates: Iterable[CustomerAggregate], now: datetime) -> FleetAnalytics:
    this_month, last_month = month_bounds(now)
    result = FleetAnalytics()
    for agg in aggregates:
        result.total_customers += 1
        result.total_revenue += agg.total_spent
        result.total_orders += agg.total_orders
        result.customers_by_type[agg.customer_type.lower()] += 1
        first = agg.first_order_date
        if first is None:
            continue
        if first >= this_month:
            result.new_customers_this_month += 1
        elif first >= last_month:
            result.new_customers_last_month += 1
    return result


@dataclass
class CustomerPage:
    items: List[CustomerAggregate]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def parse_object_id(value: str, label: str = "customer") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} ID", details={"field": "id"})


# -------------------------
# Directory service
# -------------------------
class CustomerDirectory:
    def __init__(
        self,
        repository,
        thresholds: SegmentThresholds = DEFAULT_THRESHOLDS,
        history_limit: int = 10,
        order_limit: int = 50000,
    ):
        self.repository = repository
        self.thresholds = thresholds
        self.history_limit = history_limit
        self.order_limit = order_limit

    def _aggregates(self, email: Optional[str] = None) -> List[CustomerAggregate]:
        orders = self.repository.settled_orders(email=email)
        if len(orders) > self.order_limit:
            # Everything below is in-process; past this size the grouping
            # and paging belong in the store.
            logger.warning(
                "Aggregating %d orders in memory (limit %d)", len(orders), self.order_limit
            )
        return aggregate_customers(orders, self.thresholds)

    def list_customers(self, page: int = 1, limit: int = 10, search: str = "", segment: str = "all") -> CustomerPage:
        customers = self._aggregates()
        customers.sort(key=lambda c: c.last_order_date or _OLDEST, reverse=True)

        segment = (segment or "all").strip().lower()
        if segment != "all":
            customers = [c for c in customers if c.customer_type.lower() == segment]

        needle = (search or "").strip().lower()
        if needle:
            customers = [
                c for c in customers
                if needle in (c.name or "").lower() or needle in c.email.lower()
            ]

        start = (page - 1) * limit
        return CustomerPage(items=customers[start:start + limit], total=len(customers), page=page, limit=limit)

    def get_customer(self, email: str) -> CustomerAggregate:
        found = [c for c in self._aggregates(email=email) if c.email == email]
        if not found:
            raise NotFound("Customer not found")
        customer = found[0]
        customer.orders = customer.orders[: self.history_limit]
        return customer

    def analytics(self, now: Optional[datetime] = None) -> FleetAnalytics:
        return summarize(self._aggregates(), now or now_utc())

    # -------------------------
    # Standalone customer records
    # -------------------------
    def create_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {k: data.get(k) for k in ("firstName", "lastName", "email", "phone")}
        for k, v in fields.items():
            fields[k] = v.strip() if isinstance(v, str) else v
        address = data.get("address")
        if not all(fields.values()) or not address:
            raise ValidationError("All fields are required: firstName, lastName, email, phone, address")
        if not isinstance(fields["email"], str) or not EMAIL_RE.match(fields["email"]):
            raise ValidationError("A valid email is required.", details={"field": "email"})

        address = standardize_address(address) if isinstance(address, dict) else address
        errors = validate_address(address)
        if errors:
            raise ValidationError("; ".join(errors), details={"field": "address", "errors": errors})

        doc = dict(fields, address=address, createdAt=now_utc(), deletedAt=0)
        created = self.repository.insert_customer(doc)
        logger.info("Customer record created: %s", created.get("_id"))
        return created

    def update_record(self, customer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(customer_id)
        updates: Dict[str, Any] = {}
        for k in ("firstName", "lastName", "email", "phone"):
            if k in data:
                value = data.get(k)
                value = value.strip() if isinstance(value, str) else value
                if not value:
                    raise ValidationError(f"{k} cannot be empty.", details={"field": k})
                updates[k] = value
        if "email" in updates and not EMAIL_RE.match(str(updates["email"])):
            raise ValidationError("A valid email is required.", details={"field": "email"})

        if "address" in data:
            if not isinstance(data.get("address"), dict):
                raise ValidationError("Address must be an object.", details={"field": "address"})
            address = standardize_address(data["address"])
            errors = validate_address(address, partial=True)
            if errors:
                raise ValidationError("; ".join(errors), details={"field": "address", "errors": errors})
            for k, v in address.items():
                updates[f"address.{k}"] = v
        # Country is fixed whatever the caller sent.
        updates["address.country"] = COUNTRY

        updated = self.repository.update_customer(oid, updates)
        if not updated:
            raise NotFound("Customer not found")
        return updated

    def delete_record(self, customer_id: str) -> None:
        oid = parse_object_id(customer_id)
        if not self.repository.soft_delete_customer(oid, int(time.time() * 1000)):
            raise NotFound("Customer not found")
        logger.info("Customer record soft-deleted: %s", oid)
