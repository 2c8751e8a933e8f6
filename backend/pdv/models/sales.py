from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

# Sale.status
SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"

# Sale.payment_method / CashMovement.payment_method
PAYMENT_CASH = "CASH"
PAYMENT_PIX = "PIX"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_DEBIT = "DEBIT"
PAYMENT_INSTALLMENT = "INSTALLMENT"  # store credit ("crediario")
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_PIX, PAYMENT_CREDIT, PAYMENT_DEBIT, PAYMENT_INSTALLMENT)


class Sale(db.Model):
    """
    Committed sale header.

    Written together with its SaleLines (compensated as a unit on failure).
    Status goes COMPLETED -> CANCELLED exactly once and never back.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sale_number", name="uq_sales_store_number"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Sequential per store, allocated by document_service
    sale_number = db.Column(db.Integer, nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    # All amounts in cents
    gross_total_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)  # PERCENTAGE, FIXED
    discount_value = db.Column(db.Integer, nullable=True)  # bps for PERCENTAGE, cents for FIXED
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_number(self) -> str:
        return f"{self.sale_number:06d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sale_number": self.sale_number,
            "display_number": self.display_number,
            "customer_id": self.customer_id,
            "operator_id": self.operator_id,
            "cash_session_id": self.cash_session_id,
            "gross_total_cents": self.gross_total_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "net_total_cents": self.net_total_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }

class SaleLine(db.Model):
    """Line item of a committed sale. Immutable once written."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }
