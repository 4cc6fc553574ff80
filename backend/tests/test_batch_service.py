# Overview: Pytest coverage for batch creation, lookup and the quantity-mutation primitive.

from datetime import date

import pytest

from batchledger.models import InventoryBatch
from batchledger.models.audit import AUDIT_ACTION_ADJUSTMENT, AUDIT_ACTION_SALE
from batchledger.services import audit_service, batch_service, inventory_service
from batchledger.services.errors import (
    BatchNotFoundError,
    InvariantViolation,
    ValidationError,
)

AS_OF = date(2023, 12, 1)


class TestCreateBatch:
    def test_create_batch_adds_to_line_total(self, make_batch, store, product):
        make_batch("LOT-1", 10, date(2024, 1, 1))
        make_batch("LOT-2", 4)

        assert inventory_service.get_total_quantity(store.id, product.id) == 14

    def test_create_batch_normalizes_strings(self, db_session, store, product):
        batch = batch_service.create_batch({
            "store_id": str(store.id),
            "product_id": product.id,
            "batch_number": "  LOT-9  ",
            "quantity": "12",
            "expiry_date": "2024-03-01",
            "cost_per_unit_cents": "250",
        })

        assert batch.batch_number == "LOT-9"
        assert batch.quantity == 12
        assert batch.expiry_date == date(2024, 3, 1)
        assert batch.cost_per_unit_cents == 250
        assert batch.received_date is not None

    def test_creation_writes_no_audit_entry(self, make_batch):
        batch = make_batch("LOT-1", 10)
        assert audit_service.history(batch.id) == []

    def test_duplicate_batch_number_rejected_on_same_line(self, make_batch):
        make_batch("LOT-1", 10)
        with pytest.raises(ValidationError):
            make_batch("LOT-1", 5)

    def test_same_batch_number_allowed_on_other_line(self, make_batch, other_product):
        make_batch("LOT-1", 10)
        batch = make_batch("LOT-1", 5, product_id=other_product.id)
        assert batch.product_id == other_product.id

    @pytest.mark.parametrize("field,value", [
        ("quantity", -1),
        ("quantity", "1.5"),
        ("cost_per_unit_cents", -10),
        ("batch_number", "   "),
    ])
    def test_invalid_fields_rejected(self, db_session, store, product, field, value):
        data = {
            "store_id": store.id,
            "product_id": product.id,
            "batch_number": "LOT-1",
            "quantity": 5,
        }
        data[field] = value
        with pytest.raises(ValidationError):
            batch_service.create_batch(data)
        assert db_session.query(InventoryBatch).count() == 0

    def test_unknown_store_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            batch_service.create_batch({
                "store_id": 9999,
                "product_id": product.id,
                "batch_number": "LOT-1",
                "quantity": 1,
            })

    def test_manufacturing_after_expiry_rejected(self, make_batch):
        with pytest.raises(ValidationError):
            make_batch("LOT-1", 5, date(2024, 1, 1), manufacturing_date=date(2024, 2, 1))


class TestGetBatches:
    def test_fifo_order_with_undated_last(self, make_batch, store, product):
        undated = make_batch("LOT-U", 5)
        late = make_batch("LOT-L", 5, date(2024, 6, 1))
        early = make_batch("LOT-E", 5, date(2024, 1, 1))

        batches = batch_service.get_batches(store.id, product.id, as_of=AS_OF)

        assert [b.id for b in batches] == [early.id, late.id, undated.id]

    def test_expired_batches_hidden_unless_requested(self, make_batch, store, product):
        expired = make_batch("LOT-X", 3, date(2024, 1, 1))
        fresh = make_batch("LOT-F", 3, date(2024, 6, 1))

        visible = batch_service.get_batches(store.id, product.id, as_of=date(2024, 2, 1))
        everything = batch_service.get_batches(
            store.id, product.id, include_expired=True, as_of=date(2024, 2, 1)
        )

        assert [b.id for b in visible] == [fresh.id]
        assert [b.id for b in everything] == [expired.id, fresh.id]

    def test_expiry_date_equal_to_as_of_is_not_expired(self, make_batch, store, product):
        batch = make_batch("LOT-1", 3, date(2024, 1, 1))
        batches = batch_service.get_batches(store.id, product.id, as_of=date(2024, 1, 1))
        assert [b.id for b in batches] == [batch.id]

    def test_get_batch_unknown_id(self, db_session):
        with pytest.raises(BatchNotFoundError):
            batch_service.get_batch(424242)


class TestMutateQuantity:
    def test_mutation_pairs_with_one_audit_entry(self, make_batch):
        batch = make_batch("LOT-1", 10)

        batch_service.mutate_quantity(batch.id, -4, 7, AUDIT_ACTION_SALE, details="SALE-1")
        batch_service.mutate_quantity(batch.id, 2, 7, AUDIT_ACTION_ADJUSTMENT)

        entries = audit_service.history(batch.id)
        assert [(e.quantity_before, e.quantity_after) for e in entries] == [(10, 6), (6, 8)]
        assert [e.sequence for e in entries] == [1, 2]
        assert entries[0].details == "SALE-1"
        assert entries[0].user_id == 7
        assert batch_service.get_batch(batch.id).quantity == 8

    def test_negative_result_raises_and_changes_nothing(self, make_batch):
        batch = make_batch("LOT-1", 3)

        with pytest.raises(InvariantViolation) as excinfo:
            batch_service.mutate_quantity(batch.id, -4, 1, AUDIT_ACTION_SALE)

        assert excinfo.value.batch_id == batch.id
        assert excinfo.value.quantity == 3
        assert excinfo.value.delta == -4
        assert batch_service.get_batch(batch.id).quantity == 3
        assert audit_service.history(batch.id) == []

    def test_debit_to_exactly_zero_allowed(self, make_batch):
        batch = make_batch("LOT-1", 3)
        batch_service.mutate_quantity(batch.id, -3, 1, AUDIT_ACTION_SALE)
        assert batch_service.get_batch(batch.id).quantity == 0

    def test_zero_delta_rejected(self, make_batch):
        batch = make_batch("LOT-1", 3)
        with pytest.raises(ValidationError):
            batch_service.mutate_quantity(batch.id, 0, 1, AUDIT_ACTION_SALE)

    def test_unknown_action_rejected(self, make_batch):
        batch = make_batch("LOT-1", 3)
        with pytest.raises(ValidationError):
            batch_service.mutate_quantity(batch.id, 1, 1, "transfer")

    def test_unknown_batch(self, db_session):
        with pytest.raises(BatchNotFoundError):
            batch_service.mutate_quantity(31337, 1, 1, AUDIT_ACTION_ADJUSTMENT)

    def test_version_id_increments(self, make_batch):
        batch = make_batch("LOT-1", 3)
        start = batch.version_id
        batch_service.adjust_batch_stock(batch.id, 2, 1, reason="recount")
        assert batch_service.get_batch(batch.id).version_id == start + 1


class TestAdjustAndWriteOff:
    def test_adjust_records_reason(self, make_batch):
        batch = make_batch("LOT-1", 10)
        batch_service.adjust_batch_stock(batch.id, -2, 5, reason="damaged")

        (entry,) = audit_service.history(batch.id)
        assert entry.action == AUDIT_ACTION_ADJUSTMENT
        assert entry.details == "damaged"
        assert entry.quantity_delta == -2

    def test_write_off_expired_zeros_only_expired(self, make_batch, store, product):
        expired = make_batch("LOT-X", 4, date(2024, 1, 1))
        fresh = make_batch("LOT-F", 6, date(2024, 6, 1))

        written_off = batch_service.write_off_expired(
            store.id, product.id, 9, as_of=date(2024, 2, 1)
        )

        assert [b.id for b in written_off] == [expired.id]
        assert batch_service.get_batch(expired.id).quantity == 0
        assert batch_service.get_batch(fresh.id).quantity == 6
        (entry,) = audit_service.history(expired.id)
        assert (entry.quantity_before, entry.quantity_after) == (4, 0)

    def test_write_off_with_nothing_expired(self, make_batch, store, product):
        make_batch("LOT-F", 6, date(2024, 6, 1))
        assert batch_service.write_off_expired(store.id, product.id, 9, as_of=AS_OF) == []


class TestUpdateBatchDetails:
    def test_rename_and_redate(self, make_batch):
        batch = make_batch("LOT-1", 5, date(2024, 1, 1))

        updated = batch_service.update_batch_details(
            batch.id, batch_number="LOT-1A", expiry_date="2024-02-01"
        )

        assert updated.batch_number == "LOT-1A"
        assert updated.expiry_date == date(2024, 2, 1)

    def test_quantity_not_editable(self, make_batch):
        batch = make_batch("LOT-1", 5)
        with pytest.raises(ValidationError):
            batch_service.update_batch_details(batch.id, quantity=50)
        assert batch_service.get_batch(batch.id).quantity == 5

    def test_rename_to_existing_number_rejected(self, make_batch):
        make_batch("LOT-1", 5)
        batch = make_batch("LOT-2", 5)
        with pytest.raises(ValidationError):
            batch_service.update_batch_details(batch.id, batch_number="LOT-1")
