"""
FIFO sale allocation.

Turns a requested sale quantity into concrete batch debits, soonest expiry
first, applied all-or-nothing.

DESIGN:
- Expired stock blocks the sale. If any batch on the line is past its expiry
  date and still holds units, the sale fails with ExpiredStockBlocksSale
  before anything is debited, even when fresh batches could cover it.
  Expired units have to be adjusted out (batch_service.write_off_expired)
  before the line sells again.
- Single transaction. The plan is computed, checked and applied inside one
  DB transaction under the inventory-line lock. Any failure rolls the whole
  transaction back, so there is never a partially debited line to
  compensate.
- Every debit goes through batch_service.mutate_quantity(commit=False), so
  each one carries its own audit entry (action=sale, details=reference).

ORDERING:
1. expiry_date ascending, undated batches after all dated ones
2. received_date ascending (oldest receipt first)
3. batch id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from ..extensions import db
from ..models import InventoryBatch
from ..models.audit import AUDIT_ACTION_SALE
from ..time_utils import to_iso_date
from ..validation import require_positive_quantity
from . import batch_service
from .concurrency import line_lock, run_with_retry
from .errors import ExpiredStockBlocksSale, InsufficientStock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedDebit:
    batch_id: int
    quantity: int
    expiry_date: date | None


@dataclass
class AllocationPlan:
    """Computed, not-yet-applied mapping of a requested quantity to batch debits."""
    requested: int
    debits: list[PlannedDebit] = field(default_factory=list)
    remaining: int = 0

    @property
    def allocated(self) -> int:
        return sum(d.quantity for d in self.debits)

    @property
    def is_satisfiable(self) -> bool:
        return self.remaining == 0

    def to_dict(self) -> dict:
        return {
            "requested": self.requested,
            "allocated": self.allocated,
            "remaining": self.remaining,
            "debits": [
                {
                    "batch_id": d.batch_id,
                    "quantity": d.quantity,
                    "expiry_date": to_iso_date(d.expiry_date),
                }
                for d in self.debits
            ],
        }


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    quantity: int
    expiry_date: date | None

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "expiry_date": to_iso_date(self.expiry_date),
        }


@dataclass
class AllocationResult:
    store_id: int
    product_id: int
    quantity: int
    reference: str | None
    batches_sold: list[BatchAllocation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reference": self.reference,
            "batches_sold": [b.to_dict() for b in self.batches_sold],
        }


def plan_allocation(batches: Iterable[InventoryBatch], quantity: int) -> AllocationPlan:
    """
    Greedy FIFO plan over `batches` (pure; touches no state).

    Batches are re-sorted with batch_service.fifo_sort_key so the caller's
    order does not matter. Empty batches are skipped.
    """
    plan = AllocationPlan(requested=quantity)
    need = quantity
    for batch in sorted(batches, key=batch_service.fifo_sort_key):
        if need <= 0:
            break
        if batch.quantity <= 0:
            continue
        take = min(batch.quantity, need)
        plan.debits.append(PlannedDebit(batch.id, take, batch.expiry_date))
        need -= take
    plan.remaining = need
    return plan


def find_expired_with_stock(batches: Iterable[InventoryBatch], as_of: date) -> list[int]:
    return [b.id for b in batches if b.is_expired(as_of) and b.quantity > 0]


def preview_allocation(store_id: int, product_id: int, quantity, *, as_of=None) -> AllocationPlan:
    """
    Plan a sale without applying it.

    Raises the same ExpiredStockBlocksSale the real allocation would; an
    unsatisfiable request is reported through plan.remaining.
    """
    qty = require_positive_quantity(quantity)
    as_of_date = batch_service.resolve_as_of(as_of)
    batch_service.ensure_line(store_id, product_id)

    batches = batch_service.get_batches(store_id, product_id, include_expired=True)
    expired = find_expired_with_stock(batches, as_of_date)
    if expired:
        raise ExpiredStockBlocksSale(expired)
    return plan_allocation((b for b in batches if not b.is_expired(as_of_date)), qty)


def allocate_for_sale(
    store_id: int,
    product_id: int,
    quantity,
    acting_user_id: int | None,
    reference: str | None = None,
    *,
    as_of=None,
) -> AllocationResult:
    """
    Remove `quantity` units from the line, soonest-expiring batches first.

    Either the whole quantity is debited and committed (one audit entry per
    touched batch) or nothing changes and one of ValidationError,
    ExpiredStockBlocksSale, InsufficientStock or AllocationTimeout is raised.

    Args:
        store_id / product_id: the inventory line
        quantity: units to sell, > 0
        acting_user_id: recorded on every audit entry
        reference: sale/transaction reference stored as audit details
        as_of: expiry reference date (defaults to today, UTC)
    """
    qty = require_positive_quantity(quantity)
    as_of_date = batch_service.resolve_as_of(as_of)
    batch_service.ensure_line(store_id, product_id)

    def _op():
        # Lock every batch on the line before planning; expired rows are
        # needed for the blocking check.
        batches = batch_service.get_batches(
            store_id, product_id, include_expired=True, lock=True
        )

        expired = find_expired_with_stock(batches, as_of_date)
        if expired:
            raise ExpiredStockBlocksSale(expired)

        candidates = [b for b in batches if not b.is_expired(as_of_date)]
        plan = plan_allocation(candidates, qty)
        if not plan.is_satisfiable:
            raise InsufficientStock(required=qty, available=plan.allocated)

        sold = []
        for debit in plan.debits:
            batch_service.mutate_quantity(
                debit.batch_id,
                -debit.quantity,
                acting_user_id,
                AUDIT_ACTION_SALE,
                details=reference,
                commit=False,
            )
            sold.append(BatchAllocation(debit.batch_id, debit.quantity, debit.expiry_date))

        db.session.commit()
        return sold

    try:
        with line_lock(store_id, product_id):
            sold = run_with_retry(_op)
    except (ExpiredStockBlocksSale, InsufficientStock) as exc:
        logger.warning(
            "Sale of %s units blocked on store=%s product=%s (ref=%s): %s",
            qty, store_id, product_id, reference, exc,
        )
        raise

    logger.info(
        "Allocated %s units on store=%s product=%s (ref=%s) from batches %s",
        qty, store_id, product_id, reference,
        ", ".join(f"{b.batch_id}x{b.quantity}" for b in sold),
    )
    return AllocationResult(
        store_id=store_id,
        product_id=product_id,
        quantity=qty,
        reference=reference,
        batches_sold=sold,
    )
