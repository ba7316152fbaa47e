"""
In-memory repository used by the tests.

Implements the same methods as MongoRepository over plain lists so services
and HTTP handlers can be exercised without a MongoDB server.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

from errors import ApiError, Conflict
from repository import SETTLED_PAYMENT_STATUSES

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _created(doc: Dict[str, Any]) -> datetime:
    return doc.get("createdAt") or _OLDEST


class InMemoryRepository:
    def __init__(self):
        self.orders: List[Dict[str, Any]] = []
        self.products: List[Dict[str, Any]] = []
        self.customers: List[Dict[str, Any]] = []
        self.admins: List[Dict[str, Any]] = []
        self.fail_product_ids = set()

    # Seeding helpers
    def add_order(self, **doc) -> Dict[str, Any]:
        doc.setdefault("_id", ObjectId())
        self.orders.append(doc)
        return doc

    def add_product(self, **doc) -> Dict[str, Any]:
        doc.setdefault("_id", ObjectId())
        doc.setdefault("deletedAt", 0)
        self.products.append(doc)
        return doc

    # Orders
    def settled_orders(self, email=None, since=None, until=None, identified=True):
        out = []
        for o in self.orders:
            if o.get("paymentStatus") not in SETTLED_PAYMENT_STATUSES:
                continue
            buyer = (o.get("customerInfo") or {}).get("email")
            if email is not None and buyer != email:
                continue
            if email is None and identified and not buyer:
                continue
            created = o.get("createdAt")
            if since is not None and (created is None or created < since):
                continue
            if until is not None and (created is None or created >= until):
                continue
            out.append(o)
        return sorted(out, key=_created, reverse=True)

    def recent_settled_orders(self, limit):
        return self.settled_orders(identified=False)[:limit]

    def count_settled_orders(self):
        return len(self.settled_orders(identified=False))

    def settled_revenue(self):
        return float(sum(o.get("total") or 0 for o in self.settled_orders(identified=False)))

    # Products
    def _active_products(self):
        return [p for p in self.products if p.get("deletedAt") == 0 and p.get("isDeleted") is not True]

    def count_products(self, deleted=False):
        if deleted:
            return len([p for p in self.products if p.get("deletedAt") != 0])
        return len(self._active_products())

    def active_products(self):
        return sorted(self._active_products(), key=_created, reverse=True)

    def low_stock_products(self, threshold, limit=None):
        rows = sorted(
            (p for p in self._active_products() if 0 < p.get("quantity", 0) < threshold),
            key=lambda p: p.get("quantity", 0),
        )
        return rows[:limit] if limit else rows

    def set_product_quantity(self, product_id, quantity, now):
        if product_id in self.fail_product_ids:
            raise ApiError("Database error while trying to update product quantity.", 500, "db_error")
        for p in self._active_products():
            if p["_id"] == product_id:
                p["quantity"] = quantity
                p["updatedAt"] = now
                return copy.deepcopy(p)
        return None

    # Customer records
    def _active_customer(self, customer_id):
        for c in self.customers:
            if c["_id"] == customer_id and c.get("deletedAt") == 0:
                return c
        return None

    def count_customers(self):
        return len([c for c in self.customers if c.get("deletedAt") == 0])

    def insert_customer(self, doc):
        doc = copy.deepcopy(doc)
        doc["_id"] = ObjectId()
        self.customers.append(doc)
        return copy.deepcopy(doc)

    def update_customer(self, customer_id, updates):
        c = self._active_customer(customer_id)
        if c is None:
            return None
        for key, value in updates.items():
            target = c
            parts = key.split(".")
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value
        return copy.deepcopy(c)

    def soft_delete_customer(self, customer_id, deleted_at):
        c = self._active_customer(customer_id)
        if c is None:
            return False
        c["deletedAt"] = deleted_at
        return True

    # Admins
    def find_admin_by_email(self, email) -> Optional[Dict[str, Any]]:
        return next((copy.deepcopy(a) for a in self.admins if a["email"] == email), None)

    def find_admin_by_id(self, admin_id):
        return next((copy.deepcopy(a) for a in self.admins if a["_id"] == admin_id), None)

    def list_admins(self):
        return copy.deepcopy(self.admins)

    def insert_admin(self, doc):
        if any(a["email"] == doc["email"] for a in self.admins):
            raise Conflict("Duplicate value while trying to create admin.")
        doc = dict(doc, _id=ObjectId())
        self.admins.append(doc)
        return copy.deepcopy(doc)

    def update_admin(self, admin_id, updates):
        for a in self.admins:
            if a["_id"] == admin_id:
                a.update(updates)
                return copy.deepcopy(a)
        return None
