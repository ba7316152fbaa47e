# repository.py
"""
MongoDB access for the admin backend.

Services never touch pymongo directly; they are handed a repository with the
methods below. MongoRepository is the production implementation. Every read
carries maxTimeMS so a slow store fails the request instead of hanging it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import AutoReconnect, DuplicateKeyError, ExecutionTimeout, PyMongoError

from errors import ApiError, Conflict, ServiceUnavailable
from settings import Settings

logger = logging.getLogger("etms.repository")

SETTLED_PAYMENT_STATUSES = ("succeeded", "completed")

SETTLED_FILTER: Dict[str, Any] = {"paymentStatus": {"$in": list(SETTLED_PAYMENT_STATUSES)}}
IDENTIFIED_FILTER: Dict[str, Any] = {"customerInfo.email": {"$exists": True, "$nin": ["", None]}}
ACTIVE_PRODUCT_FILTER: Dict[str, Any] = {"deletedAt": 0, "isDeleted": {"$ne": True}}
ACTIVE_CUSTOMER_FILTER: Dict[str, Any] = {"deletedAt": 0}


def settled_orders_filter(
    email: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    identified: bool = True,
) -> Dict[str, Any]:
    """Build the order filter; `since` is inclusive and `until` exclusive."""
    query: Dict[str, Any] = dict(SETTLED_FILTER)
    if email is not None:
        query["customerInfo.email"] = email
    elif identified:
        query.update(IDENTIFIED_FILTER)
    created: Dict[str, Any] = {}
    if since is not None:
        created["$gte"] = since
    if until is not None:
        created["$lt"] = until
    if created:
        query["createdAt"] = created
    return query


class MongoRepository:
    def __init__(self, db, query_timeout_ms: int = 5000):
        self.db = db
        self.query_timeout_ms = query_timeout_ms
        self.orders = db["orders"]
        self.products = db["products"]
        self.customers = db["customers"]
        self.admins = db["admins"]

    @classmethod
    def connect(cls, settings: Settings) -> "MongoRepository":
        try:
            client = MongoClient(
                settings.mongo_uri,
                serverSelectionTimeoutMS=3000,
                connectTimeoutMS=3000,
                socketTimeoutMS=settings.query_timeout_ms + 1000,
                retryWrites=True,
                tz_aware=True,
            )
            # Verify connectivity early (will raise if unreachable)
            client.admin.command("ping")
        except Exception as e:
            logger.exception("MongoDB connection failed")
            raise RuntimeError(f"MongoDB connection failed: {e}") from e
        repo = cls(client[settings.db_name], settings.query_timeout_ms)
        repo.ensure_indexes()
        return repo

    def ensure_indexes(self) -> None:
        self.orders.create_index([("paymentStatus", ASCENDING), ("customerInfo.email", ASCENDING)])
        self.orders.create_index([("createdAt", DESCENDING)])
        self.customers.create_index([("deletedAt", ASCENDING)])
        self.customers.create_index([("email", ASCENDING)], sparse=True)
        self.products.create_index([("deletedAt", ASCENDING), ("quantity", ASCENDING)])
        self.admins.create_index([("email", ASCENDING)], unique=True)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except DuplicateKeyError:
            raise Conflict(f"Duplicate value while trying to {operation}.")
        except (ExecutionTimeout, AutoReconnect) as e:
            logger.warning("Store timeout during %s: %s", operation, e)
            raise ServiceUnavailable("The data store did not respond in time. Please retry later.")
        except PyMongoError:
            logger.exception("Database error during %s", operation)
            raise ApiError(f"Database error while trying to {operation}.", 500, "db_error")

    # -------------------------
    # Orders (read-only)
    # -------------------------
    def settled_orders(
        self,
        email: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        identified: bool = True,
    ) -> List[Dict[str, Any]]:
        query = settled_orders_filter(email, since, until, identified)
        with self._guard("load orders"):
            cursor = self.orders.find(query).sort("createdAt", DESCENDING).max_time_ms(self.query_timeout_ms)
            return list(cursor)

    def recent_settled_orders(self, limit: int) -> List[Dict[str, Any]]:
        with self._guard("load recent orders"):
            cursor = (
                self.orders.find(SETTLED_FILTER)
                .sort("createdAt", DESCENDING)
                .limit(limit)
                .max_time_ms(self.query_timeout_ms)
            )
            return list(cursor)

    def count_settled_orders(self) -> int:
        with self._guard("count orders"):
            return self.orders.count_documents(SETTLED_FILTER, maxTimeMS=self.query_timeout_ms)

    def settled_revenue(self) -> float:
        pipeline = [
            {"$match": SETTLED_FILTER},
            {"$group": {"_id": None, "total": {"$sum": "$total"}}},
        ]
        with self._guard("sum revenue"):
            rows = list(self.orders.aggregate(pipeline, maxTimeMS=self.query_timeout_ms))
        return float(rows[0].get("total") or 0) if rows else 0.0

    # -------------------------
    # Products
    # -------------------------
    def count_products(self, deleted: bool = False) -> int:
        query = {"deletedAt": {"$ne": 0}} if deleted else ACTIVE_PRODUCT_FILTER
        with self._guard("count products"):
            return self.products.count_documents(query, maxTimeMS=self.query_timeout_ms)

    def active_products(self) -> List[Dict[str, Any]]:
        with self._guard("load products"):
            cursor = self.products.find(ACTIVE_PRODUCT_FILTER).sort("createdAt", DESCENDING).max_time_ms(self.query_timeout_ms)
            return list(cursor)

    def low_stock_products(self, threshold: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = dict(ACTIVE_PRODUCT_FILTER, quantity={"$gt": 0, "$lt": threshold})
        with self._guard("load low stock products"):
            cursor = self.products.find(query).sort("quantity", ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor.max_time_ms(self.query_timeout_ms))

    def set_product_quantity(self, product_id: ObjectId, quantity: int, now: datetime) -> Optional[Dict[str, Any]]:
        with self._guard("update product quantity"):
            return self.products.find_one_and_update(
                dict(ACTIVE_PRODUCT_FILTER, _id=product_id),
                {"$set": {"quantity": quantity, "updatedAt": now}},
                return_document=ReturnDocument.AFTER,
            )

    # -------------------------
    # Standalone customer records
    # -------------------------
    def count_customers(self) -> int:
        with self._guard("count customers"):
            return self.customers.count_documents(ACTIVE_CUSTOMER_FILTER, maxTimeMS=self.query_timeout_ms)

    def insert_customer(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with self._guard("create customer"):
            res = self.customers.insert_one(doc)
            return self.customers.find_one({"_id": res.inserted_id})

    def update_customer(self, customer_id: ObjectId, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._guard("update customer"):
            return self.customers.find_one_and_update(
                dict(ACTIVE_CUSTOMER_FILTER, _id=customer_id),
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )

    def soft_delete_customer(self, customer_id: ObjectId, deleted_at: int) -> bool:
        with self._guard("delete customer"):
            res = self.customers.update_one(
                dict(ACTIVE_CUSTOMER_FILTER, _id=customer_id),
                {"$set": {"deletedAt": deleted_at}},
            )
            return res.modified_count == 1

    # -------------------------
    # Admins
    # -------------------------
    def find_admin_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._guard("load admin"):
            return self.admins.find_one({"email": email})

    def find_admin_by_id(self, admin_id: ObjectId) -> Optional[Dict[str, Any]]:
        with self._guard("load admin"):
            return self.admins.find_one({"_id": admin_id})

    def list_admins(self) -> List[Dict[str, Any]]:
        with self._guard("list admins"):
            return list(self.admins.find({}).sort("created_at", ASCENDING))

    def insert_admin(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        with self._guard("create admin"):
            res = self.admins.insert_one(doc)
            return self.admins.find_one({"_id": res.inserted_id})

    def update_admin(self, admin_id: ObjectId, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._guard("update admin"):
            return self.admins.find_one_and_update(
                {"_id": admin_id}, {"$set": updates}, return_document=ReturnDocument.AFTER
            )
