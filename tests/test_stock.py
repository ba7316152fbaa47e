"""
Unit tests for StockService.

Run: pytest tests/test_stock.py -v
"""

import pytest
from bson import ObjectId

from errors import ValidationError
from stock import (
    APPLIED,
    NOT_FOUND,
    SKIPPED_ERROR,
    SKIPPED_INVALID_ID,
    SKIPPED_INVALID_QUANTITY,
    StockService,
    stock_status,
)


class TestStockStatus:
    """Tests for stock_status()"""

    @pytest.mark.parametrize(
        "quantity,expected",
        [(0, "out_of_stock"), (1, "low"), (20, "low"), (21, "medium"), (40, "medium"), (41, "healthy")],
    )
    def test_bands(self, quantity, expected):
        assert stock_status(quantity) == expected


class TestStatusListing:
    """Tests for StockService.status()"""

    def test_lists_active_products_only(self, repo):
        repo.add_product(name="Poster", quantity=0, productCode="PST")
        repo.add_product(name="Hoodie", quantity=50)
        repo.add_product(name="Gone", quantity=5, deletedAt=1)
        repo.add_product(name="Flagged", quantity=5, isDeleted=True)

        rows = StockService(repo).status()

        assert sorted((r["name"], r["status"]) for r in rows) == [("Hoodie", "healthy"), ("Poster", "out_of_stock")]

    def test_low_stock_uses_threshold(self, repo):
        repo.add_product(name="A", quantity=4)
        repo.add_product(name="B", quantity=12)

        assert [p["name"] for p in StockService(repo, low_stock_threshold=5).low_stock()] == ["A"]


class TestBulkUpdate:
    """Tests for StockService.bulk_update()"""

    def test_every_item_gets_an_outcome(self, repo):
        hoodie = repo.add_product(name="Hoodie", quantity=5)
        broken = repo.add_product(name="Broken", quantity=5)
        repo.fail_product_ids.add(broken["_id"])
        updates = [
            {"productId": str(hoodie["_id"]), "quantity": 30},
            {"productId": "nope", "quantity": 1},
            {"productId": str(hoodie["_id"]), "quantity": "10"},
            {"productId": str(hoodie["_id"]), "quantity": -1},
            {"productId": str(ObjectId()), "quantity": 3},
            {"productId": str(broken["_id"]), "quantity": 3},
            "garbage",
        ]

        result = StockService(repo).bulk_update(updates)

        assert [i.outcome for i in result.items] == [
            APPLIED,
            SKIPPED_INVALID_ID,
            SKIPPED_INVALID_QUANTITY,
            SKIPPED_INVALID_QUANTITY,
            NOT_FOUND,
            SKIPPED_ERROR,
            SKIPPED_INVALID_ID,
        ]
        assert result.counts() == {
            APPLIED: 1,
            SKIPPED_INVALID_ID: 2,
            SKIPPED_INVALID_QUANTITY: 2,
            NOT_FOUND: 1,
            SKIPPED_ERROR: 1,
        }
        assert result.partial_failure is True
        assert hoodie["quantity"] == 30

    def test_applied_item_reports_new_quantity(self, repo):
        poster = repo.add_product(name="Poster", quantity=1)

        result = StockService(repo).bulk_update([{"productId": str(poster["_id"]), "quantity": 0}])

        assert result.items[0].as_dict() == {
            "index": 0,
            "productId": str(poster["_id"]),
            "outcome": APPLIED,
            "productName": "Poster",
            "newQuantity": 0,
        }
        assert result.partial_failure is False

    def test_boolean_quantity_rejected(self, repo):
        poster = repo.add_product(name="Poster", quantity=1)

        result = StockService(repo).bulk_update([{"productId": str(poster["_id"]), "quantity": True}])

        assert result.items[0].outcome == SKIPPED_INVALID_QUANTITY

    def test_empty_list_is_nothing_to_do(self, repo):
        result = StockService(repo).bulk_update([])

        assert result.items == []
        assert result.partial_failure is False

    def test_requires_a_list(self, repo):
        with pytest.raises(ValidationError):
            StockService(repo).bulk_update(None)
