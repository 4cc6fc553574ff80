# Overview: Boundary for the batch import pipeline; uploaded rows in, batches out.

from __future__ import annotations

import csv
import io
import json
import logging
import zipfile
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import IO, Any, Iterable, Mapping

from ..models import InventoryBatch
from ..time_utils import utctoday
from ..validation import coerce_date, coerce_int, enforce_rules_batch
from . import batch_service
from .errors import BatchLedgerError, ValidationError

"""
Import contract:
- Uploads (CSV, JSON or Excel) are parsed by read_upload_rows() into plain
  dict rows whose header names must match BatchRecord field names.
- Each row is validated into a BatchRecord and created through
  batch_service.create_batch(); rows are independent, so a bad row does not
  undo good ones.
"""

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}

RECORD_FIELDS = (
    "store_id",
    "product_id",
    "batch_number",
    "quantity",
    "cost_per_unit_cents",
    "expiry_date",
    "manufacturing_date",
)


@dataclass(frozen=True)
class BatchRecord:
    store_id: int
    product_id: int
    batch_number: str
    quantity: int
    cost_per_unit_cents: int | None = None
    expiry_date: date | None = None
    manufacturing_date: date | None = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "BatchRecord":
        if not isinstance(row, Mapping):
            raise ValidationError("row must be a mapping")

        unknown = set(row) - set(RECORD_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown field: {', '.join(sorted(unknown))}")

        for name in ("store_id", "product_id", "batch_number", "quantity"):
            if row.get(name) is None or str(row.get(name)).strip() == "":
                raise ValidationError(f"{name} is required")

        patch = {
            "store_id": coerce_int(row["store_id"], "store_id"),
            "product_id": coerce_int(row["product_id"], "product_id"),
            "batch_number": str(row["batch_number"]).strip(),
            "quantity": row["quantity"],
            "cost_per_unit_cents": row.get("cost_per_unit_cents"),
            "expiry_date": coerce_date(row.get("expiry_date"), "expiry_date"),
            "manufacturing_date": coerce_date(row.get("manufacturing_date"), "manufacturing_date"),
        }
        if patch["cost_per_unit_cents"] == "":
            patch["cost_per_unit_cents"] = None
        enforce_rules_batch(patch)
        return cls(**patch)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ImportRowError:
    row_number: int
    message: str

    def to_dict(self) -> dict:
        return {"row_number": self.row_number, "message": self.message}


@dataclass
class ImportResult:
    created: list[InventoryBatch] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)
    warnings: list[ImportRowError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "created_count": len(self.created),
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "created": [b.to_dict() for b in self.created],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def import_batch_records(rows: Iterable[Mapping[str, Any] | BatchRecord]) -> ImportResult:
    """
    Create one batch per row. Row numbers in errors are 1-based.

    Duplicate batch numbers, unknown stores/products and malformed values
    are reported per row; the remaining rows are still created. Rows created
    with stock that has already expired are kept but listed in warnings,
    since that stock blocks sales on the line until it is written off.
    """
    result = ImportResult()
    today = utctoday()
    for row_number, row in enumerate(rows, start=1):
        try:
            record = row if isinstance(row, BatchRecord) else BatchRecord.from_mapping(row)
            batch = batch_service.create_batch(record.to_dict())
        except BatchLedgerError as exc:
            result.errors.append(ImportRowError(row_number, str(exc)))
            continue
        result.created.append(batch)
        if batch.expiry_date is not None and batch.expiry_date < today and batch.quantity > 0:
            result.warnings.append(ImportRowError(row_number, "Batch is already expired"))

    logger.info(
        "Batch import finished: %d created, %d failed, %d warnings",
        len(result.created), len(result.errors), len(result.warnings),
    )
    return result


def _rows_from_sheet(values: list[tuple]) -> list[dict]:
    if not values:
        return []
    headers = [str(h).strip() if h is not None else "" for h in values[0]]
    rows = []
    for raw in values[1:]:
        if all(cell is None for cell in raw):
            continue
        rows.append({
            headers[i]: raw[i]
            for i in range(min(len(headers), len(raw)))
            if headers[i]
        })
    return rows


def read_upload_rows(stream: IO[bytes], filename: str) -> list[dict]:
    """
    Parse an uploaded file into dict rows keyed by its header row.

    Supported formats by extension: .csv (UTF-8), .json (a list of objects or
    {"rows": [...]}) and Excel workbooks (first/active sheet). Raises
    ValidationError for other extensions or unreadable content.
    """
    ext = (filename or "").rsplit(".", 1)[-1].lower()

    try:
        if ext == "csv":
            text = io.StringIO(stream.read().decode("utf-8-sig"))
            return [
                {k: v for k, v in row.items() if k is not None}
                for row in csv.DictReader(text)
            ]

        if ext == "json":
            rows = json.load(stream)
            if isinstance(rows, dict):
                rows = rows.get("rows", [])
            if not isinstance(rows, list):
                raise ValidationError("JSON upload must contain a list of rows")
            return rows

        if ext in EXCEL_EXTENSIONS:
            from openpyxl import load_workbook
            wb = load_workbook(stream, read_only=True, data_only=True)
            try:
                return _rows_from_sheet(list(wb.active.iter_rows(values_only=True)))
            finally:
                wb.close()
    except (UnicodeDecodeError, csv.Error, json.JSONDecodeError, zipfile.BadZipFile, KeyError) as exc:
        raise ValidationError(f"Failed to parse upload {filename!r}: {exc}") from exc

    raise ValidationError("Unsupported file format (expected csv, json or xlsx)")
