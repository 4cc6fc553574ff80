# Overview: Typed failures raised by the batch ledger services.

from __future__ import annotations


class BatchLedgerError(Exception):
    """Base class for every failure raised by the batch ledger."""

    code = "batch_ledger_error"


class ValidationError(BatchLedgerError, ValueError):
    """Malformed input, rejected before any mutation."""

    code = "validation_error"


class BatchNotFoundError(BatchLedgerError, LookupError):
    code = "batch_not_found"

    def __init__(self, batch_id):
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id} not found")


class InvariantViolation(BatchLedgerError):
    """A mutation would have driven a batch quantity negative. Never clamped."""

    code = "invariant_violation"

    def __init__(self, batch_id: int, quantity: int, delta: int):
        self.batch_id = batch_id
        self.quantity = quantity
        self.delta = delta
        super().__init__(
            f"Batch {batch_id}: applying delta {delta} to quantity {quantity} would go negative"
        )


class InsufficientStock(BatchLedgerError):
    code = "insufficient_stock"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient inventory. Required: {required}, Available: {available}")

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class ExpiredStockBlocksSale(BatchLedgerError):
    """Expired batches still hold stock; they must be adjusted out before selling."""

    code = "expired_stock_blocks_sale"

    def __init__(self, batch_ids: list[int]):
        self.batch_ids = list(batch_ids)
        super().__init__(
            "Cannot sell while expired stock remains. "
            f"Remove or adjust expired batches: {', '.join(str(b) for b in self.batch_ids)}"
        )


class BatchMismatch(BatchLedgerError):
    code = "batch_mismatch"

    def __init__(self, batch_id: int, store_id: int, product_id: int):
        self.batch_id = batch_id
        self.store_id = store_id
        self.product_id = product_id
        super().__init__(
            f"Batch {batch_id} does not belong to store {store_id} / product {product_id}"
        )


class AllocationTimeout(BatchLedgerError):
    """Lock or commit not obtained in time. Nothing was committed; safe to retry."""

    code = "allocation_timeout"


class BatchNumberExhausted(BatchLedgerError):
    """Every generated candidate for a minted batch number is already taken."""

    code = "batch_number_exhausted"

    def __init__(self, base: str):
        self.base = base
        super().__init__(f"Could not generate a unique batch number from {base!r}")
