from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

# CashSession.status
SESSION_OPEN = "OPEN"
SESSION_CLOSED = "CLOSED"

# CashMovement.kind
MOVEMENT_OPENING = "OPENING"
MOVEMENT_SALE = "SALE"
MOVEMENT_MANUAL_CREDIT = "MANUAL_CREDIT"  # supply ("suprimento")
MOVEMENT_MANUAL_DEBIT = "MANUAL_DEBIT"  # withdrawal ("retirada"/"sangria")
MOVEMENT_EXPENSE = "EXPENSE"
MOVEMENT_KINDS = (
    MOVEMENT_OPENING,
    MOVEMENT_SALE,
    MOVEMENT_MANUAL_CREDIT,
    MOVEMENT_MANUAL_DEBIT,
    MOVEMENT_EXPENSE,
)
MANUAL_MOVEMENT_KINDS = (MOVEMENT_MANUAL_CREDIT, MOVEMENT_MANUAL_DEBIT, MOVEMENT_EXPENSE)


class CashSession(db.Model):
    """
    One operator's cash drawer session.

    LIFECYCLE:
    - OPEN: drawer in use, sales and manual movements accepted
    - CLOSED: counted and closed; terminal

    The opening balance is the session's base, not a movement. At most one
    OPEN session per (store, operator) is enforced by a partial unique index.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open_per_operator",
            "store_id",
            "operator_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_balance_cents = db.Column(db.Integer, nullable=True)  # counted by the operator

    # Computed at close; informational only
    expected_balance_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("cash_sessions", lazy=True))
    operator = db.relationship("User", backref=db.backref("cash_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "operator_id": self.operator_id,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }

class CashMovement(db.Model):
    """
    Cash ledger entry of a session.

    Amounts are signed: credits positive, debits and expenses negative.
    payment_method and sale_id are set only for SALE movements; a sale is
    booked at most once. Entries are never updated or deleted, not even when
    the sale is cancelled.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "kind", name="uq_cash_movements_sale_kind"),
        db.Index("ix_cash_movements_session_occurred", "session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    payment_method = db.Column(db.String(16), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "payment_method": self.payment_method,
            "sale_id": self.sale_id,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
