# backend/batchledger/routes/batches.py
"""
Batch inventory routes.

Thin JSON layer over the batch services. Authentication is handled in front
of this service; the acting user arrives as "user_id" in write payloads.

Error mapping (see handle_batch_ledger_error):
- ValidationError -> 400
- BatchNotFoundError -> 404
- InsufficientStock, ExpiredStockBlocksSale, BatchMismatch, InvariantViolation,
  BatchNumberExhausted -> 409
- AllocationTimeout -> 503 (nothing committed; client may retry)

Dates are ISO-8601 (YYYY-MM-DD); as_of defaults to today (UTC).
"""
from flask import Blueprint, request
from sqlalchemy import Column, Integer, String

from ..models import InventoryBatch
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    coerce_int,
)
from ..services import (
    allocation_service,
    audit_service,
    batch_service,
    import_service,
    inventory_service,
    restock_service,
)
from ..services.errors import (
    AllocationTimeout,
    BatchLedgerError,
    BatchMismatch,
    BatchNotFoundError,
    BatchNumberExhausted,
    ExpiredStockBlocksSale,
    InsufficientStock,
    InvariantViolation,
    ValidationError,
)


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")

USER_ID_COLUMN = Column("user_id", Integer, nullable=True)
REFERENCE_COLUMN = Column("reference", String(255), nullable=True)

BATCH_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_id",
        "product_id",
        "batch_number",
        "quantity",
        "cost_per_unit_cents",
        "expiry_date",
        "manufacturing_date",
        "received_date",
    },
    required_on_create={"store_id", "product_id", "batch_number", "quantity"},
)

BATCH_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"batch_number", "expiry_date", "manufacturing_date"},
)

ALLOCATE_POLICY = ModelValidationPolicy(
    writable_fields={"store_id", "product_id", "quantity", "user_id", "reference"},
    required_on_create={"store_id", "product_id", "quantity"},
    extra_columns=(USER_ID_COLUMN, REFERENCE_COLUMN),
)

RETURN_POLICY = ModelValidationPolicy(
    writable_fields={"store_id", "product_id", "quantity", "user_id", "reference", "batch_id", "expiry_date"},
    required_on_create={"store_id", "product_id", "quantity"},
    extra_columns=(USER_ID_COLUMN, REFERENCE_COLUMN, Column("batch_id", Integer, nullable=True)),
)

ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"delta", "user_id", "reason"},
    required_on_create={"delta"},
    extra_columns=(
        Column("delta", Integer, nullable=False),
        USER_ID_COLUMN,
        Column("reason", String(255), nullable=True),
    ),
)

MINIMUM_LEVEL_POLICY = ModelValidationPolicy(
    writable_fields={"store_id", "product_id", "minimum_level"},
    required_on_create={"store_id", "product_id", "minimum_level"},
    extra_columns=(Column("minimum_level", Integer, nullable=False),),
)

ERROR_STATUS = (
    (ValidationError, 400),
    (BatchNotFoundError, 404),
    (InsufficientStock, 409),
    (ExpiredStockBlocksSale, 409),
    (BatchMismatch, 409),
    (InvariantViolation, 409),
    (BatchNumberExhausted, 409),
    (AllocationTimeout, 503),
)


@batches_bp.errorhandler(BatchLedgerError)
def handle_batch_ledger_error(exc: BatchLedgerError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    body = {"error": str(exc), "code": exc.code}
    if isinstance(exc, InsufficientStock):
        body.update(required=exc.required, available=exc.available)
    elif isinstance(exc, ExpiredStockBlocksSale):
        body["batch_ids"] = exc.batch_ids
    return body, status


def _line_args() -> tuple[int, int]:
    store_id = request.args.get("store_id")
    product_id = request.args.get("product_id")
    if store_id is None or product_id is None:
        raise ValidationError("store_id and product_id are required")
    return coerce_int(store_id, "store_id"), coerce_int(product_id, "product_id")


def _optional_int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    return coerce_int(raw, name) if raw not in (None, "") else None


@batches_bp.get("")
def list_batches_route():
    store_id, product_id = _line_args()
    include_expired = request.args.get("include_expired", "false").lower() in ("1", "true", "yes")
    batches = batch_service.get_batches(
        store_id,
        product_id,
        include_expired=include_expired,
        as_of=request.args.get("as_of"),
    )
    return {
        "batches": [b.to_dict() for b in batches],
        "total_quantity": inventory_service.get_total_quantity(store_id, product_id),
    }


@batches_bp.post("")
def create_batch_route():
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=BATCH_CREATE_POLICY,
        partial=False,
    )
    batch = batch_service.create_batch(patch)
    return {"batch": batch.to_dict()}, 201


@batches_bp.get("/<int:batch_id>")
def get_batch_route(batch_id: int):
    return {"batch": batch_service.get_batch(batch_id).to_dict()}


@batches_bp.patch("/<int:batch_id>")
def update_batch_route(batch_id: int):
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=BATCH_UPDATE_POLICY,
        partial=True,
    )
    batch = batch_service.update_batch_details(batch_id, **patch)
    return {"batch": batch.to_dict()}


@batches_bp.post("/<int:batch_id>/adjust")
def adjust_batch_route(batch_id: int):
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=ADJUST_POLICY,
        partial=False,
    )
    batch = batch_service.adjust_batch_stock(
        batch_id,
        patch["delta"],
        patch.get("user_id"),
        reason=patch.get("reason"),
    )
    return {"batch": batch.to_dict()}


@batches_bp.get("/<int:batch_id>/history")
def batch_history_route(batch_id: int):
    entries = audit_service.history(batch_id)
    return {"batch_id": batch_id, "entries": [e.to_dict() for e in entries]}


@batches_bp.post("/allocate")
def allocate_route():
    """
    Sell from the line in FIFO order. All-or-nothing.
    """
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=ALLOCATE_POLICY,
        partial=False,
    )
    result = allocation_service.allocate_for_sale(
        patch["store_id"],
        patch["product_id"],
        patch["quantity"],
        patch.get("user_id"),
        reference=patch.get("reference"),
    )
    return {"allocation": result.to_dict()}, 201


@batches_bp.get("/allocate/preview")
def preview_allocation_route():
    store_id, product_id = _line_args()
    plan = allocation_service.preview_allocation(
        store_id,
        product_id,
        request.args.get("quantity"),
        as_of=request.args.get("as_of"),
    )
    return {"plan": plan.to_dict()}


@batches_bp.post("/return")
def return_route():
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=RETURN_POLICY,
        partial=False,
    )
    batch = restock_service.return_to_batch(
        patch["store_id"],
        patch["product_id"],
        patch["quantity"],
        patch.get("user_id"),
        batch_id=patch.get("batch_id"),
        expiry_date=patch.get("expiry_date"),
        reference=patch.get("reference"),
    )
    return {"batch": batch.to_dict()}, 201


@batches_bp.post("/import")
def import_route():
    payload = request.get_json(silent=True) or {}
    rows = payload.get("rows")
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list")
    return _import_response(import_service.import_batch_records(rows))


@batches_bp.post("/import/upload")
def import_upload_route():
    """
    Multipart upload ("file") of CSV, JSON or Excel rows.
    """
    if "file" not in request.files:
        raise ValidationError("file is required")
    file = request.files["file"]
    rows = import_service.read_upload_rows(file.stream, file.filename or "")
    return _import_response(import_service.import_batch_records(rows))


def _import_response(result):
    if result.created:
        status = 201
    elif result.errors:
        status = 400
    else:
        status = 200
    return result.to_dict(), status


@batches_bp.get("/summary")
def summary_route():
    store_id, product_id = _line_args()
    return inventory_service.get_inventory_summary(
        store_id=store_id,
        product_id=product_id,
        as_of=request.args.get("as_of"),
    )


@batches_bp.put("/minimum-level")
def set_minimum_level_route():
    patch = validate_payload(
        model=InventoryBatch,
        payload=request.get_json(silent=True),
        policy=MINIMUM_LEVEL_POLICY,
        partial=False,
    )
    row = inventory_service.set_minimum_level(
        patch["store_id"], patch["product_id"], patch["minimum_level"]
    )
    return {"threshold": row.to_dict()}


@batches_bp.get("/low-stock")
def low_stock_route():
    return {"items": inventory_service.list_low_stock(store_id=_optional_int_arg("store_id"))}


@batches_bp.get("/expiring")
def expiring_route():
    batches = inventory_service.list_expiring_batches(
        days=_optional_int_arg("days"),
        store_id=_optional_int_arg("store_id"),
        as_of=request.args.get("as_of"),
    )
    return {
        "batches": [b.to_dict() for b in batches],
        "totals": inventory_service.summarize_expiry_value(batches),
    }


@batches_bp.get("/expired")
def expired_route():
    batches = inventory_service.list_expired_batches(
        store_id=_optional_int_arg("store_id"),
        as_of=request.args.get("as_of"),
    )
    return {
        "batches": [b.to_dict() for b in batches],
        "totals": inventory_service.summarize_expiry_value(batches),
    }


@batches_bp.post("/write-off-expired")
def write_off_expired_route():
    """
    Zero every expired batch of a line (adjustment entries); unblocks sales.
    """
    payload = request.get_json(silent=True) or {}
    for name in ("store_id", "product_id"):
        if payload.get(name) is None:
            raise ValidationError(f"Missing required fields: {name}")
    user_id = payload.get("user_id")
    written_off = batch_service.write_off_expired(
        coerce_int(payload["store_id"], "store_id"),
        coerce_int(payload["product_id"], "product_id"),
        coerce_int(user_id, "user_id") if user_id is not None else None,
        as_of=payload.get("as_of"),
    )
    return {"batches": [b.to_dict() for b in written_off]}
