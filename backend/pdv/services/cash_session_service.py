"""
Cash Session Service

WHY: Cashier accountability. Each operator works one drawer session at a time;
every money movement in the drawer is a signed ledger entry on that session.

DESIGN PRINCIPLES:
- At most one OPEN session per operator per store (checked here, enforced by
  a partial unique index)
- The opening balance is the session base, not a movement
- Running balance = opening balance + sum of movement amounts
- Closing records the counted cash and the variance; a variance never blocks
- Closed sessions are immutable
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..errors import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    NotFoundError,
    PersistenceError,
    SessionAlreadyOpenError,
    SessionNotOpenError,
    ValidationError,
)
from ..models import CashMovement, CashSession, Sale, Store, User
from ..models.cash import (
    MANUAL_MOVEMENT_KINDS,
    MOVEMENT_MANUAL_CREDIT,
    MOVEMENT_SALE,
    SESSION_CLOSED,
    SESSION_OPEN,
)
from ..models.sales import PAYMENT_METHODS, SALE_COMPLETED
from ..money import MAX_AMOUNT_CENTS
from ..time_utils import utcnow
from .persistence import Repository, get_repository


# =============================================================================
# LOOKUPS
# =============================================================================

def get_session(session_id: int, repository: Repository | None = None) -> CashSession:
    session = get_repository(repository).get(CashSession, session_id)
    if session is None:
        raise NotFoundError("Cash session not found", details={"session_id": session_id})
    return session


def get_open_session(
    operator_id: int,
    store_id: int | None = None,
    repository: Repository | None = None,
) -> CashSession | None:
    """The operator's OPEN session (in `store_id` when given), if any."""
    filters = {"operator_id": operator_id, "status": SESSION_OPEN}
    if store_id is not None:
        filters["store_id"] = store_id
    rows = get_repository(repository).query(CashSession, filters, order_by=["-opened_at"], limit=1)
    return rows[0] if rows else None


def require_open_session(session_id: int, repository: Repository | None = None) -> CashSession:
    session = get_session(session_id, repository)
    if session.status != SESSION_OPEN:
        raise SessionNotOpenError(
            "Cash session is not open",
            details={"session_id": session_id, "status": session.status},
        )
    return session


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_session(
    store_id: int,
    operator_id: int,
    opening_balance_cents: int,
    *,
    repository: Repository | None = None,
) -> CashSession:
    """
    Open a drawer session for an operator.

    Raises:
        SessionAlreadyOpenError: operator already has an OPEN session in the store
        NotFoundError: unknown store, unknown or inactive operator
        ValidationError: operator belongs to another store
        InvalidAmountError: negative opening balance
    """
    repo = get_repository(repository)

    if isinstance(opening_balance_cents, bool) or not isinstance(opening_balance_cents, int):
        raise InvalidAmountError("opening_balance_cents must be an integer")
    if opening_balance_cents < 0:
        raise InvalidAmountError("Opening balance cannot be negative")
    if opening_balance_cents > MAX_AMOUNT_CENTS:
        raise InvalidAmountError("Opening balance exceeds maximum")

    if repo.get(Store, store_id) is None:
        raise NotFoundError("Store not found", details={"store_id": store_id})

    operator = repo.get(User, operator_id)
    if operator is None or not operator.is_active:
        raise NotFoundError("Operator not found", details={"operator_id": operator_id})
    if operator.store_id != store_id:
        raise ValidationError(
            "Operator belongs to another store",
            details={"operator_id": operator_id, "store_id": store_id},
        )

    existing = get_open_session(operator_id, store_id, repo)
    if existing is not None:
        raise SessionAlreadyOpenError(
            f"Operator already has an open cash session (session {existing.id})",
            details={"session_id": existing.id},
        )

    try:
        session_id = repo.insert(CashSession, {
            "store_id": store_id,
            "operator_id": operator_id,
            "status": SESSION_OPEN,
            "opening_balance_cents": opening_balance_cents,
            "opened_at": utcnow(),
        })
    except PersistenceError:
        # Lost a race against another open: the partial unique index rejected us
        existing = get_open_session(operator_id, store_id, repo)
        if existing is not None:
            raise SessionAlreadyOpenError(
                f"Operator already has an open cash session (session {existing.id})",
                details={"session_id": existing.id},
            )
        raise

    current_app.logger.info(
        "Cash session %s opened by operator %s with %s cents",
        session_id, operator_id, opening_balance_cents,
    )
    return get_session(session_id, repo)


def close_session(
    session_id: int,
    counted_closing_balance_cents: int,
    notes: str | None = None,
    *,
    repository: Repository | None = None,
) -> CashSession:
    """
    Close a session with the cash the operator counted.

    Expected balance (the running balance) and variance are recorded for the
    operator's information. A discrepancy is never an error.
    """
    repo = get_repository(repository)

    if isinstance(counted_closing_balance_cents, bool) or not isinstance(counted_closing_balance_cents, int):
        raise InvalidAmountError("counted closing balance must be an integer")
    if counted_closing_balance_cents < 0:
        raise InvalidAmountError("Closing balance cannot be negative")

    require_open_session(session_id, repo)
    expected = running_balance(session_id, repo)
    variance = counted_closing_balance_cents - expected

    closed = repo.update(
        CashSession,
        session_id,
        {
            "status": SESSION_CLOSED,
            "closing_balance_cents": counted_closing_balance_cents,
            "expected_balance_cents": expected,
            "variance_cents": variance,
            "closed_at": utcnow(),
            "notes": notes,
        },
        expect={"status": SESSION_OPEN},
    )
    if not closed:
        raise SessionNotOpenError("Cash session is not open", details={"session_id": session_id})

    if variance:
        current_app.logger.warning(
            "Cash session %s closed with variance %s cents (counted %s, expected %s)",
            session_id, variance, counted_closing_balance_cents, expected,
        )
    else:
        current_app.logger.info("Cash session %s closed, no variance", session_id)

    return get_session(session_id, repo)


# =============================================================================
# MOVEMENTS
# =============================================================================

def record_manual_movement(
    session_id: int,
    kind: str,
    description: str,
    amount_cents: int,
    *,
    user_id: int | None = None,
    repository: Repository | None = None,
) -> CashMovement:
    """
    Record a supply (MANUAL_CREDIT), withdrawal (MANUAL_DEBIT) or EXPENSE.

    amount_cents is the magnitude the operator typed; debits and expenses are
    stored negative.
    """
    repo = get_repository(repository)

    normalized = kind.strip().upper() if isinstance(kind, str) else None
    if normalized not in MANUAL_MOVEMENT_KINDS:
        raise ValidationError(
            f"Invalid movement kind {kind!r}",
            details={"allowed": list(MANUAL_MOVEMENT_KINDS)},
        )
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("description is required")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidAmountError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise InvalidAmountError("Movement amount must be positive")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise InvalidAmountError("Movement amount exceeds maximum")

    require_open_session(session_id, repo)

    signed = amount_cents if normalized == MOVEMENT_MANUAL_CREDIT else -amount_cents
    movement_id = repo.insert(CashMovement, {
        "session_id": session_id,
        "kind": normalized,
        "amount_cents": signed,
        "description": description.strip(),
        "created_by_user_id": user_id,
        "occurred_at": utcnow(),
    })
    return repo.get(CashMovement, movement_id)


def find_sale_movement(sale_id: int, repository: Repository | None = None) -> CashMovement | None:
    rows = get_repository(repository).query(
        CashMovement, {"sale_id": sale_id, "kind": MOVEMENT_SALE}, limit=1,
    )
    return rows[0] if rows else None


def append_sale_movement(
    session_id: int,
    sale_id: int,
    amount_cents: int,
    payment_method: str,
    *,
    description: str | None = None,
    user_id: int | None = None,
    repository: Repository | None = None,
) -> CashMovement:
    """
    Book a sale's net total on its session. Idempotent per sale.

    The session need not still be open: a repaired sale is booked on the
    session it was sold in.
    """
    repo = get_repository(repository)
    if payment_method not in PAYMENT_METHODS:
        raise InvalidPaymentMethodError(
            f"Invalid payment method {payment_method!r}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    existing = find_sale_movement(sale_id, repo)
    if existing is not None:
        return existing

    get_session(session_id, repo)
    movement_id = repo.insert(CashMovement, {
        "session_id": session_id,
        "kind": MOVEMENT_SALE,
        "amount_cents": amount_cents,
        "description": description,
        "payment_method": payment_method,
        "sale_id": sale_id,
        "created_by_user_id": user_id,
        "occurred_at": utcnow(),
    })
    return repo.get(CashMovement, movement_id)


def list_movements(session_id: int, repository: Repository | None = None) -> list[CashMovement]:
    """Movements in timestamp order (completion order, not insertion order)."""
    return get_repository(repository).query(
        CashMovement, {"session_id": session_id}, order_by=["occurred_at", "id"],
    )


# =============================================================================
# BALANCES
# =============================================================================

def running_balance(session_id: int, repository: Repository | None = None) -> int:
    repo = get_repository(repository)
    session = get_session(session_id, repo)
    return session.opening_balance_cents + sum(m.amount_cents for m in list_movements(session_id, repo))


def payment_method_totals(session_id: int, repository: Repository | None = None) -> dict[str, int]:
    """SALE movement totals by payment method; methods without sales are omitted."""
    totals: dict[str, int] = defaultdict(int)
    for movement in list_movements(session_id, repository):
        if movement.kind == MOVEMENT_SALE:
            totals[movement.payment_method] += movement.amount_cents
    return dict(totals)


def get_session_summary(session_id: int, repository: Repository | None = None) -> dict:
    """
    Session reconciliation view.

    Returns:
        - Session details
        - Running balance and totals per movement kind
        - Sales totals per payment method
        - Completed/cancelled sale counts
        - Variance (once closed)
    """
    repo = get_repository(repository)
    session = get_session(session_id, repo)
    movements = list_movements(session_id, repo)

    by_kind: dict[str, int] = defaultdict(int)
    for movement in movements:
        by_kind[movement.kind] += movement.amount_cents

    sales = repo.query(Sale, {"cash_session_id": session_id})
    completed = sum(1 for s in sales if s.status == SALE_COMPLETED)

    return {
        "session": session.to_dict(),
        "running_balance_cents": session.opening_balance_cents + sum(m.amount_cents for m in movements),
        "totals_by_kind": dict(by_kind),
        "payment_method_totals": payment_method_totals(session_id, repo),
        "movements_count": len(movements),
        "sales_count": completed,
        "cancelled_sales_count": len(sales) - completed,
        "is_closed": session.status == SESSION_CLOSED,
        "variance_cents": session.variance_cents,
    }
