"""
Unit tests for MongoRepository against mocked pymongo collections.

Run: pytest tests/test_repository.py -v
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, ExecutionTimeout, OperationFailure, ServerSelectionTimeoutError

from errors import ApiError, Conflict, ServiceUnavailable
from repository import MongoRepository, settled_orders_filter


@pytest.fixture
def db():
    collections = {}

    def get(name):
        return collections.setdefault(name, MagicMock(name=name))

    database = MagicMock()
    database.__getitem__.side_effect = get
    return database


class TestSettledOrdersFilter:
    """Tests for settled_orders_filter()"""

    def test_default_requires_email(self):
        query = settled_orders_filter()

        assert query["paymentStatus"] == {"$in": ["succeeded", "completed"]}
        assert query["customerInfo.email"] == {"$exists": True, "$nin": ["", None]}
        assert "createdAt" not in query

    def test_single_identity(self):
        assert settled_orders_filter(email="a@x.com")["customerInfo.email"] == "a@x.com"

    def test_unidentified_allowed(self):
        assert "customerInfo.email" not in settled_orders_filter(identified=False)

    def test_date_window(self):
        since = datetime(2026, 2, 1, tzinfo=timezone.utc)
        until = datetime(2026, 3, 1, tzinfo=timezone.utc)

        query = settled_orders_filter(since=since, until=until)

        assert query["createdAt"] == {"$gte": since, "$lt": until}


class TestMongoRepository:
    """Tests for MongoRepository query shape and error translation."""

    def test_settled_orders_applies_timeout_and_sort(self, db):
        repo = MongoRepository(db, query_timeout_ms=1234)
        cursor = db["orders"].find.return_value.sort.return_value.max_time_ms.return_value
        cursor.__iter__.return_value = iter([{"_id": 1}])

        assert repo.settled_orders() == [{"_id": 1}]
        db["orders"].find.return_value.sort.return_value.max_time_ms.assert_called_once_with(1234)

    def test_execution_timeout_becomes_service_unavailable(self, db):
        repo = MongoRepository(db)
        db["orders"].count_documents.side_effect = ExecutionTimeout("operation exceeded time limit")

        with pytest.raises(ServiceUnavailable) as exc:
            repo.count_settled_orders()

        assert exc.value.status == 503

    def test_unreachable_server_becomes_service_unavailable(self, db):
        repo = MongoRepository(db)
        db["products"].count_documents.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(ServiceUnavailable):
            repo.count_products()

    def test_duplicate_key_becomes_conflict(self, db):
        repo = MongoRepository(db)
        db["admins"].insert_one.side_effect = DuplicateKeyError("dup")

        with pytest.raises(Conflict):
            repo.insert_admin({"email": "a@x.com"})

    def test_other_errors_become_db_error(self, db):
        repo = MongoRepository(db)
        db["customers"].find_one_and_update.side_effect = OperationFailure("boom")

        with pytest.raises(ApiError) as exc:
            repo.update_customer(ObjectId(), {"phone": "1"})

        assert exc.value.status == 500
        assert exc.value.code == "db_error"
        assert "boom" not in exc.value.message

    def test_settled_revenue_empty(self, db):
        repo = MongoRepository(db)
        db["orders"].aggregate.return_value = iter([])

        assert repo.settled_revenue() == 0.0

    def test_settled_revenue_sum(self, db):
        repo = MongoRepository(db)
        db["orders"].aggregate.return_value = iter([{"_id": None, "total": 42.5}])

        assert repo.settled_revenue() == 42.5

    def test_soft_delete_reports_match(self, db):
        repo = MongoRepository(db)
        db["customers"].update_one.return_value.modified_count = 0

        assert repo.soft_delete_customer(ObjectId(), 1) is False
