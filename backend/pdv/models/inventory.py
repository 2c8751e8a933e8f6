from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

# StockMovement.movement_type
MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_CANCEL = "SALE_CANCEL"
MOVEMENT_ADJUST = "ADJUST"


class Product(db.Model):
    """
    Product master data with its current stock level.

    Stock is a mutable counter, changed only through inventory_service with
    atomic `stock = stock + delta` updates. Every change is journaled in
    StockMovement within the same DB transaction.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "code", name="uq_products_store_code"),
        db.Index("ix_products_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Store-scoped lookup code (barcode or internal code)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    @property
    def is_below_minimum(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "code": self.code,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only journal of stock deltas.

    A sale line is decremented at most once (SALE) and restored at most once
    (SALE_CANCEL): the unique constraint makes both operations idempotent, so
    a failed follow-up can simply be retried.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("sale_line_id", "movement_type", name="uq_stock_movements_line_type"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "stock_after": self.stock_after,
            "sale_id": self.sale_id,
            "sale_line_id": self.sale_line_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
