# Overview: Append-only audit trail for batch quantity mutations.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import BatchAuditEntry, InventoryBatch
from ..time_utils import utcnow
from .errors import BatchNotFoundError
"""
Batch Audit Trail Invariants (authoritative)

- Exactly one BatchAuditEntry per successful batch quantity mutation.
- Entries are appended by batch_service.mutate_quantity() only, in the same
  flush as the quantity change. A rejected mutation appends nothing.
- quantity_before/quantity_after are the batch quantity around the change;
  consecutive entries of one batch chain (next.before == prev.after).
- sequence is 1-based per batch and defines history order.
- No updates or deletes (mapper events on the model refuse them).
"""


def append_audit_entry(
    *,
    batch: InventoryBatch,
    user_id: int | None,
    action: str,
    quantity_before: int,
    quantity_after: int,
    details: str | None = None,
) -> BatchAuditEntry:
    """
    Append one audit entry for a mutation of `batch`.

    Caller must hold the inventory-line lock and own the transaction;
    nothing is committed here.
    """
    last_sequence = db.session.query(
        func.coalesce(func.max(BatchAuditEntry.sequence), 0)
    ).filter(BatchAuditEntry.batch_id == batch.id).scalar()

    entry = BatchAuditEntry(
        batch_id=batch.id,
        sequence=int(last_sequence or 0) + 1,
        user_id=user_id,
        action=action,
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        details=details,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def history(batch_id: int) -> list[BatchAuditEntry]:
    """
    Full audit history of one batch, oldest first.

    Each call re-queries, so the result is a snapshot as of the call.
    """
    if db.session.get(InventoryBatch, batch_id) is None:
        raise BatchNotFoundError(batch_id)

    return (
        BatchAuditEntry.query.filter_by(batch_id=batch_id)
        .order_by(BatchAuditEntry.sequence.asc())
        .all()
    )


def history_for_line(store_id: int, product_id: int, limit: int = 200) -> list[BatchAuditEntry]:
    """Most recent entries across all batches of an inventory line, newest first."""
    return (
        BatchAuditEntry.query.join(InventoryBatch, InventoryBatch.id == BatchAuditEntry.batch_id)
        .filter(
            InventoryBatch.store_id == store_id,
            InventoryBatch.product_id == product_id,
        )
        .order_by(BatchAuditEntry.id.desc())
        .limit(limit)
        .all()
    )


def entries_for_reference(details: str) -> list[BatchAuditEntry]:
    """All entries written for one sale/return reference, in write order."""
    return (
        BatchAuditEntry.query.filter_by(details=details)
        .order_by(BatchAuditEntry.id.asc())
        .all()
    )


def reconcile_batch(batch: InventoryBatch) -> list[str]:
    """
    Check that the audit chain of `batch` explains its current quantity.

    Returns a list of human-readable problems (empty when consistent).
    The first entry's quantity_before is the batch's quantity at creation,
    which is not itself an audited mutation.
    """
    problems: list[str] = []
    entries = (
        BatchAuditEntry.query.filter_by(batch_id=batch.id)
        .order_by(BatchAuditEntry.sequence.asc())
        .all()
    )

    previous = None
    for expected_sequence, entry in enumerate(entries, start=1):
        if entry.sequence != expected_sequence:
            problems.append(
                f"batch {batch.id}: sequence gap, expected {expected_sequence} got {entry.sequence}"
            )
        if entry.quantity_after < 0:
            problems.append(f"batch {batch.id}: entry {entry.sequence} records negative quantity")
        if previous is not None and entry.quantity_before != previous.quantity_after:
            problems.append(
                f"batch {batch.id}: entry {entry.sequence} starts at {entry.quantity_before}, "
                f"previous ended at {previous.quantity_after}"
            )
        previous = entry

    if previous is not None and previous.quantity_after != batch.quantity:
        problems.append(
            f"batch {batch.id}: quantity {batch.quantity} does not match last audited "
            f"quantity {previous.quantity_after}"
        )
    return problems


def reconcile_line(store_id: int, product_id: int) -> list[str]:
    batches = (
        InventoryBatch.query.filter_by(store_id=store_id, product_id=product_id)
        .order_by(InventoryBatch.id.asc())
        .all()
    )
    problems: list[str] = []
    for batch in batches:
        problems.extend(reconcile_batch(batch))
    return problems
