# Overview: Pytest coverage for the batch import boundary.

import io
from datetime import date, datetime

import pytest
from openpyxl import Workbook

from batchledger.services import import_service, inventory_service
from batchledger.services.errors import ValidationError
from batchledger.services.import_service import BatchRecord


class TestBatchRecord:
    def test_from_mapping_normalizes(self):
        record = BatchRecord.from_mapping({
            "store_id": "1",
            "product_id": 2,
            "batch_number": " LOT-5 ",
            "quantity": "10",
            "cost_per_unit_cents": "",
            "expiry_date": "2024-04-01",
        })

        assert record == BatchRecord(
            store_id=1,
            product_id=2,
            batch_number="LOT-5",
            quantity=10,
            expiry_date=date(2024, 4, 1),
        )

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            BatchRecord.from_mapping({
                "store_id": 1,
                "product_id": 2,
                "batch_number": "LOT-5",
                "quantity": 1,
                "colour": "red",
            })

    def test_missing_required_field(self):
        with pytest.raises(ValidationError):
            BatchRecord.from_mapping({"store_id": 1, "product_id": 2, "quantity": 1})


class TestImportBatchRecords:
    def test_valid_rows_created_despite_bad_rows(self, db_session, store, product):
        rows = [
            {"store_id": store.id, "product_id": product.id, "batch_number": "L1", "quantity": 5},
            {"store_id": store.id, "product_id": product.id, "batch_number": "L2", "quantity": -2},
            {"store_id": store.id, "product_id": product.id, "batch_number": "L1", "quantity": 3},
            {"store_id": 424242, "product_id": product.id, "batch_number": "L3", "quantity": 1},
            {"store_id": store.id, "product_id": product.id, "batch_number": "L4", "quantity": 7,
             "expiry_date": "2024-09-01", "manufacturing_date": "2024-01-01"},
        ]

        result = import_service.import_batch_records(rows)

        assert [b.batch_number for b in result.created] == ["L1", "L4"]
        assert [e.row_number for e in result.errors] == [2, 3, 4]
        assert not result.ok
        assert inventory_service.get_total_quantity(store.id, product.id) == 12

        payload = result.to_dict()
        assert payload["created_count"] == 2
        assert payload["error_count"] == 3

    def test_accepts_prebuilt_records(self, db_session, store, product):
        record = BatchRecord(store_id=store.id, product_id=product.id, batch_number="R1", quantity=2)

        result = import_service.import_batch_records([record])

        assert result.ok
        assert result.created[0].quantity == 2

    def test_already_expired_row_created_with_warning(self, db_session, store, product):
        rows = [
            {"store_id": store.id, "product_id": product.id, "batch_number": "OLD", "quantity": 5,
             "expiry_date": "2000-01-01"},
            {"store_id": store.id, "product_id": product.id, "batch_number": "EMPTY", "quantity": 0,
             "expiry_date": "2000-01-01"},
            {"store_id": store.id, "product_id": product.id, "batch_number": "FRESH", "quantity": 5,
             "expiry_date": "2099-01-01"},
        ]

        result = import_service.import_batch_records(rows)

        assert result.ok
        assert [b.batch_number for b in result.created] == ["OLD", "EMPTY", "FRESH"]
        assert [(w.row_number, w.message) for w in result.warnings] == [(1, "Batch is already expired")]

        payload = result.to_dict()
        assert payload["warning_count"] == 1
        assert payload["warnings"] == [{"row_number": 1, "message": "Batch is already expired"}]


class TestReadUploadRows:
    def test_csv(self):
        data = (
            "store_id,product_id,batch_number,quantity,expiry_date,cost_per_unit_cents\n"
            "1,2,LOT-1,10,2024-04-01,\n"
            "1,2,LOT-2,5,,120\n"
        ).encode("utf-8")

        rows = import_service.read_upload_rows(io.BytesIO(data), "stock.CSV")

        assert rows[0]["batch_number"] == "LOT-1"
        assert rows[1]["cost_per_unit_cents"] == "120"
        assert BatchRecord.from_mapping(rows[1]).expiry_date is None

    def test_json_object_with_rows(self):
        data = b'{"rows": [{"store_id": 1, "product_id": 2, "batch_number": "J1", "quantity": 3}]}'
        rows = import_service.read_upload_rows(io.BytesIO(data), "rows.json")
        assert rows == [{"store_id": 1, "product_id": 2, "batch_number": "J1", "quantity": 3}]

    def test_xlsx(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["store_id", "product_id", "batch_number", "quantity", "expiry_date"])
        ws.append([1, 2, "X1", 8, datetime(2024, 7, 1)])
        ws.append([None, None, None, None, None])
        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)

        rows = import_service.read_upload_rows(buf, "stock.xlsx")

        assert len(rows) == 1
        assert BatchRecord.from_mapping(rows[0]).expiry_date == date(2024, 7, 1)

    def test_unsupported_extension(self):
        with pytest.raises(ValidationError):
            import_service.read_upload_rows(io.BytesIO(b""), "stock.txt")

    def test_malformed_json(self):
        with pytest.raises(ValidationError):
            import_service.read_upload_rows(io.BytesIO(b"{not json"), "rows.json")


class TestUploadRoute:
    def test_csv_upload_creates_batches(self, client, store, product):
        data = (
            "store_id,product_id,batch_number,quantity\n"
            f"{store.id},{product.id},U1,4\n"
            f"{store.id},{product.id},U2,6\n"
        ).encode("utf-8")

        resp = client.post(
            "/api/batches/import/upload",
            data={"file": (io.BytesIO(data), "stock.csv")},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 201, resp.get_json()
        assert resp.get_json()["created_count"] == 2
        assert inventory_service.get_total_quantity(store.id, product.id) == 10

    def test_missing_file(self, client, db_session):
        resp = client.post("/api/batches/import/upload", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400
