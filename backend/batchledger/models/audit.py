from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z


AUDIT_ACTION_SALE = "sale"
AUDIT_ACTION_RETURN = "return"
AUDIT_ACTION_ADJUSTMENT = "adjustment"

AUDIT_ACTIONS = (AUDIT_ACTION_SALE, AUDIT_ACTION_RETURN, AUDIT_ACTION_ADJUSTMENT)


class BatchAuditEntry(db.Model):
    """
    Append-only record of one batch quantity mutation.

    - Written in the same flush as the quantity change it describes.
    - sequence is 1-based and strictly increasing per batch; history order is
      by sequence, not by created_at (clock resolution varies by backend).
    - Rows are never updated or deleted (enforced by mapper events below).
    """
    __tablename__ = "batch_audit_entries"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "sequence", name="uq_batch_audit_batch_sequence"),
        db.Index("ix_batch_audit_details", "details"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(16), nullable=False, index=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    details = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("InventoryBatch", backref=db.backref("audit_entries", lazy=True))

    @property
    def quantity_delta(self) -> int:
        return self.quantity_after - self.quantity_before

    def __repr__(self) -> str:
        return (
            f"<BatchAuditEntry batch_id={self.batch_id} seq={self.sequence} "
            f"{self.action} {self.quantity_before}->{self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "sequence": self.sequence,
            "user_id": self.user_id,
            "action": self.action,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "quantity_delta": self.quantity_delta,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(BatchAuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise RuntimeError("batch audit entries are append-only")


@event.listens_for(BatchAuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise RuntimeError("batch audit entries are append-only")
