# Overview: Batch Store. Owns batch rows and the single quantity-mutation primitive.

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Mapping

from sqlalchemy import case, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryBatch, Product, Store
from ..models.audit import AUDIT_ACTIONS, AUDIT_ACTION_ADJUSTMENT
from ..time_utils import utcnow, utctoday, parse_iso_date, parse_iso_datetime, to_utc_naive
from ..validation import coerce_int, coerce_date, enforce_rules_batch
from .audit_service import append_audit_entry
from .concurrency import line_lock, lock_for_update, run_with_retry
from .errors import BatchNotFoundError, InvariantViolation, ValidationError
"""
Batch Ledger Invariants (authoritative)

Inventory model:
- Stock is a set of InventoryBatch rows per inventory line (store_id, product_id).
- Line on-hand quantity is SUM(batch.quantity); it is never stored.
- batch.quantity >= 0 at all times.

Mutation:
- mutate_quantity() is the only code path that changes batch.quantity.
- It checks quantity + delta >= 0 (InvariantViolation otherwise), writes the
  new quantity and appends one BatchAuditEntry in the same flush.
- With commit=True it runs under the inventory-line lock inside its own
  retried transaction. With commit=False the caller already holds the line
  lock and owns the transaction (allocation/return engines).

Time semantics:
- expiry_date / manufacturing_date are calendar dates.
- A batch is expired when expiry_date < as_of (as_of defaults to today, UTC).
- expiry_date NULL never expires.
"""

logger = logging.getLogger(__name__)

BATCH_DETAIL_FIELDS = {"batch_number", "expiry_date", "manufacturing_date"}


def resolve_as_of(as_of) -> date:
    if as_of is None:
        return utctoday()
    try:
        parsed = parse_iso_date(as_of)
    except ValueError:
        raise ValidationError("as_of must be an ISO-8601 date")
    return parsed or utctoday()


def ensure_line(store_id: int, product_id: int) -> tuple[Store, Product]:
    store = db.session.get(Store, store_id)
    if store is None:
        raise ValidationError(f"store {store_id} not found")
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"product {product_id} not found")
    return store, product


def fifo_sort_key(batch: InventoryBatch):
    """
    First-expiry-first-out ordering.

    Dated batches by expiry ascending, undated batches last, ties by
    received_date then id so repeated runs allocate identically.
    """
    return (
        batch.expiry_date is None,
        batch.expiry_date or date.max,
        batch.received_date,
        batch.id,
    )


def _fifo_order_by():
    return (
        case((InventoryBatch.expiry_date.is_(None), 1), else_=0),
        InventoryBatch.expiry_date.asc(),
        InventoryBatch.received_date.asc(),
        InventoryBatch.id.asc(),
    )


def get_batch(batch_id: int, *, lock: bool = False) -> InventoryBatch:
    query = db.session.query(InventoryBatch).filter_by(id=batch_id)
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise BatchNotFoundError(batch_id)
    return batch


def get_batches(
    store_id: int,
    product_id: int,
    *,
    include_expired: bool = False,
    as_of=None,
    lock: bool = False,
) -> list[InventoryBatch]:
    """
    Batches of one inventory line in FIFO order.

    With include_expired=False, batches whose expiry_date is before as_of are
    left out of the result (they remain stored and still count toward the
    line total).
    """
    query = db.session.query(InventoryBatch).filter(
        InventoryBatch.store_id == store_id,
        InventoryBatch.product_id == product_id,
    )
    if not include_expired:
        as_of_date = resolve_as_of(as_of)
        query = query.filter(
            or_(
                InventoryBatch.expiry_date.is_(None),
                InventoryBatch.expiry_date >= as_of_date,
            )
        )
    if lock:
        query = lock_for_update(query)
    return query.order_by(*_fifo_order_by()).all()


def _find_by_number(store_id: int, product_id: int, batch_number: str) -> InventoryBatch | None:
    return db.session.query(InventoryBatch).filter_by(
        store_id=store_id,
        product_id=product_id,
        batch_number=batch_number,
    ).first()


def batch_number_exists(store_id: int, product_id: int, batch_number: str) -> bool:
    return _find_by_number(store_id, product_id, batch_number) is not None


def _normalize_batch_data(data: Mapping) -> dict:
    if data is None or not isinstance(data, Mapping):
        raise ValidationError("batch data must be a mapping")

    for field in ("store_id", "product_id", "batch_number", "quantity"):
        if data.get(field) is None:
            raise ValidationError(f"{field} is required")

    patch = {
        "store_id": coerce_int(data["store_id"], "store_id"),
        "product_id": coerce_int(data["product_id"], "product_id"),
        "batch_number": str(data["batch_number"]).strip(),
        "quantity": data["quantity"],
        "cost_per_unit_cents": data.get("cost_per_unit_cents"),
        "expiry_date": coerce_date(data.get("expiry_date"), "expiry_date"),
        "manufacturing_date": coerce_date(data.get("manufacturing_date"), "manufacturing_date"),
    }
    enforce_rules_batch(patch)

    if len(patch["batch_number"]) > 64:
        raise ValidationError("batch_number exceeds max length 64")

    received = data.get("received_date")
    if isinstance(received, str):
        try:
            received = parse_iso_datetime(received)
        except ValueError:
            raise ValidationError("received_date must be an ISO-8601 datetime")
    elif isinstance(received, datetime):
        received = to_utc_naive(received)
    elif received is not None:
        raise ValidationError("received_date must be an ISO-8601 datetime")
    patch["received_date"] = received or utcnow()
    return patch


def _create_batch_inner(patch: dict) -> InventoryBatch:
    """Insert without locking, retry, or commit. Caller holds the line lock."""
    ensure_line(patch["store_id"], patch["product_id"])

    if batch_number_exists(patch["store_id"], patch["product_id"], patch["batch_number"]):
        raise ValidationError(
            f"batch_number {patch['batch_number']!r} already exists for this inventory line"
        )

    batch = InventoryBatch(**patch)
    db.session.add(batch)
    db.session.flush()
    return batch


def create_batch(data: Mapping, *, commit: bool = True) -> InventoryBatch:
    """
    Insert a new batch.

    Raises ValidationError for negative quantity/cost, a blank batch number,
    unknown store/product, manufacturing_date after expiry_date, or a
    batch_number already used on the same inventory line.

    Creation is not a quantity mutation and writes no audit entry; the
    opening quantity is the first entry's quantity_before baseline.
    """
    patch = _normalize_batch_data(data)

    if not commit:
        return _create_batch_inner(patch)

    def _op():
        try:
            batch = _create_batch_inner(patch)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ValidationError(
                f"batch_number {patch['batch_number']!r} already exists for this inventory line"
            ) from exc
        logger.info(
            "Created batch %s (%s) store=%s product=%s qty=%s",
            batch.id, batch.batch_number, batch.store_id, batch.product_id, batch.quantity,
        )
        return batch

    with line_lock(patch["store_id"], patch["product_id"]):
        return run_with_retry(_op)


def _apply_mutation(
    batch: InventoryBatch,
    delta: int,
    acting_user_id: int | None,
    action: str,
    details: str | None,
) -> InventoryBatch:
    before = batch.quantity
    after = before + delta
    if after < 0:
        raise InvariantViolation(batch.id, before, delta)

    batch.quantity = after
    append_audit_entry(
        batch=batch,
        user_id=acting_user_id,
        action=action,
        quantity_before=before,
        quantity_after=after,
        details=details,
    )
    return batch


def mutate_quantity(
    batch_id: int,
    delta: int,
    acting_user_id: int | None,
    action: str,
    details: str | None = None,
    *,
    commit: bool = True,
) -> InventoryBatch:
    """
    The only sanctioned way to change a batch quantity.

    Locks the batch row, rejects the change with InvariantViolation if the
    result would be negative, then writes the quantity and its audit entry
    together. Returns the updated batch.
    """
    delta = coerce_int(delta, "delta")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if action not in AUDIT_ACTIONS:
        raise ValidationError(f"action must be one of: {', '.join(AUDIT_ACTIONS)}")
    if details is not None:
        details = str(details)[:255]

    if not commit:
        batch = get_batch(batch_id, lock=True)
        return _apply_mutation(batch, delta, acting_user_id, action, details)

    current = get_batch(batch_id)
    store_id, product_id = current.store_id, current.product_id

    def _op():
        batch = get_batch(batch_id, lock=True)
        _apply_mutation(batch, delta, acting_user_id, action, details)
        db.session.commit()
        return batch

    with line_lock(store_id, product_id):
        batch = run_with_retry(_op)

    logger.info("Batch %s %s %+d -> %s", batch.id, action, delta, batch.quantity)
    return batch


def adjust_batch_stock(
    batch_id: int,
    delta: int,
    acting_user_id: int | None,
    reason: str | None = None,
) -> InventoryBatch:
    """Manual correction, shrink or write-off of one batch (action=adjustment)."""
    return mutate_quantity(
        batch_id,
        delta,
        acting_user_id,
        AUDIT_ACTION_ADJUSTMENT,
        details=reason,
    )


def write_off_expired(
    store_id: int,
    product_id: int,
    acting_user_id: int | None,
    *,
    as_of=None,
    reason: str = "expired stock write-off",
) -> list[InventoryBatch]:
    """
    Zero every expired batch on the line that still holds stock.

    This is the explicit clean-up that unblocks sales on a line with expired
    stock. All write-offs commit together or not at all.
    """
    as_of_date = resolve_as_of(as_of)
    ensure_line(store_id, product_id)

    def _op():
        batches = get_batches(store_id, product_id, include_expired=True, lock=True)
        written_off = []
        for batch in batches:
            if batch.is_expired(as_of_date) and batch.quantity > 0:
                _apply_mutation(batch, -batch.quantity, acting_user_id, AUDIT_ACTION_ADJUSTMENT, reason)
                written_off.append(batch)
        db.session.commit()
        return written_off

    with line_lock(store_id, product_id):
        written_off = run_with_retry(_op)

    if written_off:
        logger.info(
            "Wrote off %d expired batches on store=%s product=%s",
            len(written_off), store_id, product_id,
        )
    return written_off


def update_batch_details(batch_id: int, **fields) -> InventoryBatch:
    """
    Edit descriptive batch fields (batch_number, expiry_date, manufacturing_date).

    quantity goes through mutate_quantity() and cost_per_unit_cents is fixed
    at receipt; both are rejected here.
    """
    forbidden = set(fields) - BATCH_DETAIL_FIELDS
    if forbidden:
        raise ValidationError(f"Field not editable: {', '.join(sorted(forbidden))}")
    if not fields:
        raise ValidationError("no fields to update")

    current = get_batch(batch_id)
    store_id, product_id = current.store_id, current.product_id

    def _op():
        batch = get_batch(batch_id, lock=True)

        if "batch_number" in fields:
            number = fields["batch_number"]
            number = str(number).strip() if number is not None else ""
            if not number:
                raise ValidationError("batch_number is required")
            if len(number) > 64:
                raise ValidationError("batch_number exceeds max length 64")
            existing = _find_by_number(store_id, product_id, number)
            if existing is not None and existing.id != batch.id:
                raise ValidationError(f"batch_number {number!r} already exists for this inventory line")
            batch.batch_number = number

        if "expiry_date" in fields:
            batch.expiry_date = coerce_date(fields["expiry_date"], "expiry_date")
        if "manufacturing_date" in fields:
            batch.manufacturing_date = coerce_date(fields["manufacturing_date"], "manufacturing_date")

        if (
            batch.manufacturing_date is not None
            and batch.expiry_date is not None
            and batch.manufacturing_date > batch.expiry_date
        ):
            raise ValidationError("manufacturing_date cannot be after expiry_date")

        db.session.commit()
        return batch

    with line_lock(store_id, product_id):
        return run_with_retry(_op)
