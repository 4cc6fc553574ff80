# Overview: Pytest coverage for inventory line totals, thresholds and expiry listings.

from datetime import date

import pytest

from batchledger.services import inventory_service
from batchledger.services.errors import ValidationError


class TestTotals:
    def test_total_includes_expired_sellable_does_not(self, make_batch, store, product):
        make_batch("A", 5, date(2024, 1, 1))
        make_batch("B", 7, date(2024, 6, 1))
        make_batch("C", 3)
        as_of = date(2024, 2, 1)

        assert inventory_service.get_total_quantity(store.id, product.id) == 15
        assert inventory_service.get_sellable_quantity(store.id, product.id, as_of=as_of) == 10

    def test_summary(self, make_batch, store, product):
        make_batch("A", 5, date(2024, 1, 1))
        make_batch("B", 7, date(2024, 6, 1))
        make_batch("C", 3)
        make_batch("D", 0, date(2024, 3, 1))

        summary = inventory_service.get_inventory_summary(
            store_id=store.id, product_id=product.id, as_of="2024-02-01"
        )

        assert summary["as_of"] == "2024-02-01"
        assert summary["total_quantity"] == 15
        assert summary["expired_quantity"] == 5
        assert summary["sellable_quantity"] == 10
        assert summary["batch_count"] == 4
        assert summary["active_batch_count"] == 3
        assert summary["minimum_level"] == 10
        assert summary["is_below_minimum"] is False
        assert summary["next_expiry_date"] == "2024-06-01"

    def test_empty_line_totals_zero(self, db_session, store, product):
        assert inventory_service.get_total_quantity(store.id, product.id) == 0


class TestMinimumLevel:
    def test_default_level_applies_without_threshold(self, db_session, store, product):
        assert inventory_service.get_minimum_level(store.id, product.id) == 10

    def test_set_and_update_threshold(self, db_session, store, product):
        inventory_service.set_minimum_level(store.id, product.id, 4)
        row = inventory_service.set_minimum_level(store.id, product.id, "6")

        assert row.minimum_level == 6
        assert inventory_service.get_minimum_level(store.id, product.id) == 6

    def test_negative_threshold_rejected(self, db_session, store, product):
        with pytest.raises(ValidationError):
            inventory_service.set_minimum_level(store.id, product.id, -1)

    def test_at_minimum_counts_as_low(self, make_batch, store, product):
        make_batch("A", 4)
        inventory_service.set_minimum_level(store.id, product.id, 4)
        assert inventory_service.is_below_minimum(store.id, product.id) is True

        inventory_service.set_minimum_level(store.id, product.id, 3)
        assert inventory_service.is_below_minimum(store.id, product.id) is False

    def test_list_low_stock(self, make_batch, store, product, other_product):
        make_batch("A", 4)
        make_batch("B", 50, product_id=other_product.id)
        inventory_service.set_minimum_level(store.id, other_product.id, 60)

        rows = inventory_service.list_low_stock()

        assert [(r["product_id"], r["total_quantity"], r["shortfall"]) for r in rows] == [
            (product.id, 4, 6),
            (other_product.id, 50, 10),
        ]

    def test_threshold_without_batches_is_low(self, db_session, store, product):
        inventory_service.set_minimum_level(store.id, product.id, 2)

        rows = inventory_service.list_low_stock(store_id=store.id)

        assert rows == [{
            "store_id": store.id,
            "product_id": product.id,
            "total_quantity": 0,
            "minimum_level": 2,
            "shortfall": 2,
        }]

    def test_low_stock_filtered_by_store(self, make_batch, store, other_store, product):
        make_batch("A", 1)
        make_batch("B", 1, store_id=other_store.id)

        rows = inventory_service.list_low_stock(store_id=other_store.id)

        assert [r["store_id"] for r in rows] == [other_store.id]


class TestExpiryListings:
    def test_expiring_window(self, make_batch):
        make_batch("PAST", 2, date(2023, 12, 31))
        soon = make_batch("SOON", 3, date(2024, 1, 15), cost_per_unit_cents=100)
        make_batch("EMPTY", 0, date(2024, 1, 10))
        make_batch("LATER", 4, date(2024, 3, 1))
        make_batch("NEVER", 5)

        batches = inventory_service.list_expiring_batches(days=30, as_of=date(2024, 1, 1))

        assert [b.id for b in batches] == [soon.id]
        assert inventory_service.summarize_expiry_value(batches) == {
            "batch_count": 1,
            "units": 3,
            "cost_cents": 300,
        }

    def test_expired_listing(self, make_batch):
        old = make_batch("OLD", 2, date(2023, 12, 1), cost_per_unit_cents=50)
        older = make_batch("OLDER", 1, date(2023, 11, 1))
        make_batch("GONE", 0, date(2023, 11, 1))
        make_batch("FRESH", 4, date(2024, 3, 1))

        batches = inventory_service.list_expired_batches(as_of=date(2024, 1, 1))

        assert [b.id for b in batches] == [older.id, old.id]
        assert inventory_service.summarize_expiry_value(batches)["cost_cents"] == 100
