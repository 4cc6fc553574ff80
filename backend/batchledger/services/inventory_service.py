# Overview: Read-side views over inventory lines; totals, thresholds and expiry listings.

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import InventoryBatch, ReorderThreshold
from ..time_utils import to_iso_date
from ..validation import require_non_negative_int
from .batch_service import ensure_line, resolve_as_of
"""
Inventory Aggregate View (authoritative)

- Line on-hand quantity is SUM(batch.quantity) over every batch of the line,
  expired ones included. It is derived on every read and never stored.
- "Sellable" quantity excludes batches expired as of the reference date.
- Low stock means on-hand <= minimum_level. minimum_level comes from
  ReorderThreshold, or DEFAULT_MINIMUM_LEVEL when the line has none.
- Everything here is read-only except set_minimum_level().
"""


def get_total_quantity(store_id: int, product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryBatch.quantity), 0)
    ).filter(
        InventoryBatch.store_id == store_id,
        InventoryBatch.product_id == product_id,
    )
    return int(q.scalar() or 0)


def get_sellable_quantity(store_id: int, product_id: int, as_of=None) -> int:
    as_of_date = resolve_as_of(as_of)
    q = db.session.query(
        func.coalesce(func.sum(InventoryBatch.quantity), 0)
    ).filter(
        InventoryBatch.store_id == store_id,
        InventoryBatch.product_id == product_id,
        or_(
            InventoryBatch.expiry_date.is_(None),
            InventoryBatch.expiry_date >= as_of_date,
        ),
    )
    return int(q.scalar() or 0)


def _default_minimum_level() -> int:
    return int(current_app.config.get("DEFAULT_MINIMUM_LEVEL", 10))


def get_minimum_level(store_id: int, product_id: int) -> int:
    row = ReorderThreshold.query.filter_by(store_id=store_id, product_id=product_id).first()
    return row.minimum_level if row else _default_minimum_level()


def set_minimum_level(store_id: int, product_id: int, minimum_level) -> ReorderThreshold:
    level = require_non_negative_int(minimum_level, "minimum_level")
    ensure_line(store_id, product_id)

    row = ReorderThreshold.query.filter_by(store_id=store_id, product_id=product_id).first()
    if row is None:
        row = ReorderThreshold(store_id=store_id, product_id=product_id, minimum_level=level)
        db.session.add(row)
    else:
        row.minimum_level = level
    db.session.commit()
    return row


def is_below_minimum(store_id: int, product_id: int) -> bool:
    return get_total_quantity(store_id, product_id) <= get_minimum_level(store_id, product_id)


def get_inventory_summary(*, store_id: int, product_id: int, as_of=None) -> dict:
    ensure_line(store_id, product_id)
    as_of_date = resolve_as_of(as_of)

    batches = InventoryBatch.query.filter_by(store_id=store_id, product_id=product_id).all()

    total = sum(b.quantity for b in batches)
    expired = sum(b.quantity for b in batches if b.is_expired(as_of_date))
    dated_with_stock = [
        b.expiry_date for b in batches
        if b.quantity > 0 and b.expiry_date is not None and not b.is_expired(as_of_date)
    ]
    minimum = get_minimum_level(store_id, product_id)

    return {
        "store_id": store_id,
        "product_id": product_id,
        "as_of": to_iso_date(as_of_date),
        "total_quantity": total,
        "sellable_quantity": total - expired,
        "expired_quantity": expired,
        "batch_count": len(batches),
        "active_batch_count": sum(1 for b in batches if b.quantity > 0),
        "minimum_level": minimum,
        "is_below_minimum": total <= minimum,
        "next_expiry_date": to_iso_date(min(dated_with_stock)) if dated_with_stock else None,
    }


def list_low_stock(store_id: int | None = None) -> list[dict]:
    """
    Inventory lines at or below their minimum level.

    A line is any (store, product) pair with at least one batch or an
    explicit threshold row.
    """
    totals_q = db.session.query(
        InventoryBatch.store_id,
        InventoryBatch.product_id,
        func.sum(InventoryBatch.quantity),
    ).group_by(InventoryBatch.store_id, InventoryBatch.product_id)
    thresholds_q = ReorderThreshold.query
    if store_id is not None:
        totals_q = totals_q.filter(InventoryBatch.store_id == store_id)
        thresholds_q = thresholds_q.filter(ReorderThreshold.store_id == store_id)

    totals = {(s, p): int(q or 0) for s, p, q in totals_q.all()}
    thresholds = {(t.store_id, t.product_id): t.minimum_level for t in thresholds_q.all()}
    default_level = _default_minimum_level()

    rows = []
    for key in sorted(set(totals) | set(thresholds)):
        total = totals.get(key, 0)
        minimum = thresholds.get(key, default_level)
        if total <= minimum:
            rows.append({
                "store_id": key[0],
                "product_id": key[1],
                "total_quantity": total,
                "minimum_level": minimum,
                "shortfall": minimum - total,
            })
    return rows


def list_expiring_batches(*, days: int | None = None, store_id: int | None = None, as_of=None) -> list[InventoryBatch]:
    """Batches with stock that are not yet expired but expire within `days`."""
    if days is None:
        days = int(current_app.config.get("EXPIRING_SOON_DAYS", 30))
    days = require_non_negative_int(days, "days")
    as_of_date = resolve_as_of(as_of)

    q = InventoryBatch.query.filter(
        InventoryBatch.expiry_date.isnot(None),
        InventoryBatch.quantity > 0,
        InventoryBatch.expiry_date >= as_of_date,
        InventoryBatch.expiry_date <= as_of_date + timedelta(days=days),
    )
    if store_id is not None:
        q = q.filter(InventoryBatch.store_id == store_id)
    return q.order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc()).all()


def list_expired_batches(*, store_id: int | None = None, as_of=None) -> list[InventoryBatch]:
    """Expired batches still holding stock; these block sales on their line."""
    as_of_date = resolve_as_of(as_of)

    q = InventoryBatch.query.filter(
        InventoryBatch.expiry_date.isnot(None),
        InventoryBatch.quantity > 0,
        InventoryBatch.expiry_date < as_of_date,
    )
    if store_id is not None:
        q = q.filter(InventoryBatch.store_id == store_id)
    return q.order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc()).all()


def summarize_expiry_value(batches: list[InventoryBatch]) -> dict:
    """Units and cost at risk for a batch listing (unknown-cost batches count as 0)."""
    return {
        "batch_count": len(batches),
        "units": sum(b.quantity for b in batches),
        "cost_cents": sum(b.quantity * (b.cost_per_unit_cents or 0) for b in batches),
    }
