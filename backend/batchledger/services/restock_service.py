"""
Restock and return processing.

Returned units go back to the batch they were sold from when the caller
knows it, otherwise into a newly minted return batch. Either way the credit
is a mutate_quantity() call (action=return), so every returned unit has an
audit entry.

Receiving new stock (receive_batch) creates a batch with its opening
quantity; that is a creation, not a mutation, and writes no audit entry.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import InventoryBatch
from ..models.audit import AUDIT_ACTION_RETURN
from ..time_utils import utcnow
from ..validation import coerce_date, coerce_int, require_positive_quantity
from . import batch_service
from .concurrency import line_lock, run_with_retry
from .errors import BatchMismatch, BatchNumberExhausted, ValidationError

logger = logging.getLogger(__name__)

# Upper bound on "-N" suffixes tried before giving up on a timestamp
MAX_NUMBER_ATTEMPTS = 100


def generate_batch_number(
    store_id: int,
    product_id: int,
    *,
    prefix: str | None = None,
    now: datetime | None = None,
) -> str:
    """
    Unique batch number for a minted batch: PREFIX-YYYYMMDDHHMMSSffffff.

    On collision within the line a -2, -3, ... suffix is appended.
    Call with the line lock held so the uniqueness check stays valid.
    """
    if prefix is None:
        prefix = current_app.config.get("RETURN_BATCH_PREFIX", "RETURN")
    now = now or utcnow()
    base = f"{prefix}-{now:%Y%m%d%H%M%S%f}"

    candidate = base
    for n in range(2, MAX_NUMBER_ATTEMPTS + 2):
        if not batch_service.batch_number_exists(store_id, product_id, candidate):
            return candidate
        candidate = f"{base}-{n}"
    raise BatchNumberExhausted(base)


def return_to_batch(
    store_id: int,
    product_id: int,
    quantity,
    acting_user_id: int | None,
    batch_id: int | None = None,
    expiry_date=None,
    reference: str | None = None,
) -> InventoryBatch:
    """
    Put returned units back into stock.

    - batch_id given: the batch must belong to (store_id, product_id), else
      BatchMismatch; the batch is credited.
    - batch_id omitted: a new batch is created with a generated batch number,
      the given expiry_date (None = does not expire) and received_date=now,
      then credited, so the returned quantity is audited.

    Raises ValidationError for a non-positive quantity, or when expiry_date
    is combined with batch_id (an existing batch keeps its own expiry).
    """
    qty = require_positive_quantity(quantity)
    expiry = coerce_date(expiry_date, "expiry_date")
    if batch_id is not None and expiry is not None:
        raise ValidationError("expiry_date only applies when no batch_id is given")
    batch_service.ensure_line(store_id, product_id)
    if batch_id is not None:
        batch_id = coerce_int(batch_id, "batch_id")

    def _op():
        if batch_id is not None:
            target = batch_service.get_batch(batch_id, lock=True)
            if target.store_id != store_id or target.product_id != product_id:
                raise BatchMismatch(batch_id, store_id, product_id)
        else:
            target = batch_service.create_batch(
                {
                    "store_id": store_id,
                    "product_id": product_id,
                    "batch_number": generate_batch_number(store_id, product_id),
                    "quantity": 0,
                    "expiry_date": expiry,
                    "received_date": utcnow(),
                },
                commit=False,
            )

        batch_service.mutate_quantity(
            target.id,
            qty,
            acting_user_id,
            AUDIT_ACTION_RETURN,
            details=reference,
            commit=False,
        )
        db.session.commit()
        return target

    with line_lock(store_id, product_id):
        batch = run_with_retry(_op)

    logger.info(
        "Returned %s units to batch %s (%s) store=%s product=%s ref=%s",
        qty, batch.id, batch.batch_number, store_id, product_id, reference,
    )
    return batch


def receive_batch(
    *,
    store_id: int,
    product_id: int,
    quantity,
    batch_number: str | None = None,
    cost_per_unit_cents: int | None = None,
    expiry_date=None,
    manufacturing_date=None,
    received_date=None,
) -> InventoryBatch:
    """
    Receive a delivery as a new batch.

    batch_number is generated with the "LOT" prefix when omitted.
    """
    qty = require_positive_quantity(quantity)
    batch_service.ensure_line(store_id, product_id)

    def _op():
        number = batch_number
        if number is None or not str(number).strip():
            number = generate_batch_number(store_id, product_id, prefix="LOT")
        batch = batch_service.create_batch(
            {
                "store_id": store_id,
                "product_id": product_id,
                "batch_number": number,
                "quantity": qty,
                "cost_per_unit_cents": cost_per_unit_cents,
                "expiry_date": expiry_date,
                "manufacturing_date": manufacturing_date,
                "received_date": received_date,
            },
            commit=False,
        )
        db.session.commit()
        return batch

    with line_lock(store_id, product_id):
        batch = run_with_retry(_op)

    logger.info(
        "Received batch %s (%s) qty=%s store=%s product=%s",
        batch.id, batch.batch_number, qty, store_id, product_id,
    )
    return batch
