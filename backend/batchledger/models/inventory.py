from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Product master data.

    Products are chain-wide; stock for a product is tracked per store as a
    set of InventoryBatch rows (the "inventory line").
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryBatch(db.Model):
    """
    A lot of physical stock received together.

    QUANTITY OWNERSHIP:
    - quantity is remaining units, never negative (CHECK constraint).
    - quantity is changed only through batch_service.mutate_quantity(),
      which writes the matching BatchAuditEntry in the same flush.
    - Batches are never deleted; zero-quantity rows stay for audit history.

    cost_per_unit_cents is fixed at receipt time.
    expiry_date NULL means the batch does not expire.
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        # batch_number is human-readable and unique per inventory line
        db.UniqueConstraint("store_id", "product_id", "batch_number", name="uq_batches_line_number"),
        db.Index("ix_batches_line_expiry", "store_id", "product_id", "expiry_date"),
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents
    cost_per_unit_cents = db.Column(db.Integer, nullable=True)

    manufacturing_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True, index=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("batches", lazy=True))
    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def is_expired(self, as_of) -> bool:
        """Expired means expiry_date strictly before the reference date."""
        return self.expiry_date is not None and self.expiry_date < as_of

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch id={self.id} number={self.batch_number!r} "
            f"store_id={self.store_id} product_id={self.product_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "manufacturing_date": to_iso_date(self.manufacturing_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "received_date": to_utc_z(self.received_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ReorderThreshold(db.Model):
    """
    Minimum stock level for one inventory line.

    Holds only the threshold. On-hand quantity is always derived from
    InventoryBatch rows and is never stored here.
    """
    __tablename__ = "reorder_thresholds"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_reorder_thresholds_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    minimum_level = db.Column(db.Integer, nullable=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "minimum_level": self.minimum_level,
            "updated_at": to_utc_z(self.updated_at),
        }
