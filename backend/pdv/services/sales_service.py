"""
Sales Service - Sale commit protocol

WHY: A sale touches four records (header, lines, stock, cash) that cannot be
written in one database transaction across the register's collaborators.
The header and its lines are the authoritative record; stock and cash are
follow-ups applied after it.

PROTOCOL:
1. Validate cart, payment method, session, customer (nothing written)
2. Allocate the sale number and write the header (one transaction)
3. Write the lines; on failure delete what was written (compensation)
4. Decrement stock per line (journaled, idempotent, best-effort)
5. Book the net total on the cash session (idempotent, best-effort)

A follow-up failure never undoes the sale: it is returned as a
PartialFailureWarning and can be repaired with reconcile_sale().
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..cart import Cart
from ..errors import (
    AlreadyCancelledError,
    DeadlineExceededError,
    EmptyCartError,
    InvalidDiscountError,
    InvalidPaymentMethodError,
    NoOpenSessionError,
    NotFoundError,
    PartialFailureWarning,
    PdvError,
    PersistenceError,
    ValidationError,
)
from ..models import CashSession, Customer, Sale, SaleLine
from ..models.cash import SESSION_OPEN
from ..models.sales import PAYMENT_METHODS, SALE_CANCELLED, SALE_COMPLETED
from ..money import Discount
from ..time_utils import utcnow
from . import cash_session_service
from .concurrency import Deadline, deadline_expired, run_with_retry
from .document_service import next_sale_number
from .inventory_service import apply_sale_line, check_availability, get_product
from .persistence import Repository, get_repository


STEP_STOCK = "stock_decrement"
STEP_CASH = "cash_movement"


@dataclass
class SaleSummary:
    sale_id: int
    sale_number: int
    display_number: str
    gross_total_cents: int
    discount_cents: int
    net_total_cents: int
    payment_method: str
    status: str
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "display_number": self.display_number,
            "gross_total_cents": self.gross_total_cents,
            "discount_cents": self.discount_cents,
            "net_total_cents": self.net_total_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class ReconciliationSummary:
    sale_id: int
    stock_applied: list[dict] = field(default_factory=list)
    cash_applied: bool = False
    warnings: list[PartialFailureWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "stock_applied": list(self.stock_applied),
            "cash_applied": self.cash_applied,
            "warnings": [w.to_dict() for w in self.warnings],
        }


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int, repository: Repository | None = None) -> Sale:
    sale = get_repository(repository).get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def get_sale_lines(sale_id: int, repository: Repository | None = None) -> list[SaleLine]:
    return get_repository(repository).query(SaleLine, {"sale_id": sale_id}, order_by=["id"])


# =============================================================================
# HELPERS
# =============================================================================

def _warn(warnings: list, warning: PartialFailureWarning) -> None:
    current_app.logger.warning(
        "Sale %s: %s failed: %s", warning.sale_id, warning.step, warning.message,
    )
    warnings.append(warning)


def _normalize_payment_method(payment_method) -> str:
    method = payment_method.strip().upper() if isinstance(payment_method, str) else None
    if method not in PAYMENT_METHODS:
        raise InvalidPaymentMethodError(
            f"Invalid payment method {payment_method!r}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return method


def _compensate(repo: Repository, sale_id: int, line_ids: list[int], exc: PdvError) -> None:
    """Delete the lines written so far, then the header."""
    try:
        for line_id in reversed(line_ids):
            repo.delete(SaleLine, line_id)
        repo.delete(Sale, sale_id)
    except PersistenceError as comp_exc:
        exc.details["compensation_failed"] = True
        exc.details["sale_id"] = sale_id
        current_app.logger.error(
            "Compensation failed for sale %s after %s: %s",
            sale_id, exc.message, comp_exc.message,
        )
        return
    current_app.logger.warning(
        "Sale %s rolled back (%s lines removed): %s", sale_id, len(line_ids), exc.message,
    )


def _apply_stock(
    repo: Repository,
    sale_id: int,
    line_ids: list[int],
    *,
    user_id: int | None,
    note: str,
    deadline: Deadline | None,
    warnings: list,
) -> list[dict]:
    """Decrement stock for each line; failures become warnings."""
    enforce = bool(current_app.config.get("PDV_ENFORCE_STOCK", False))
    applied = []
    for line_id in line_ids:
        if deadline_expired(deadline):
            _warn(warnings, PartialFailureWarning(
                step=STEP_STOCK,
                message="Skipped: deadline exceeded",
                sale_id=sale_id,
                sale_line_id=line_id,
            ))
            continue
        product_id = None
        try:
            line = repo.get(SaleLine, line_id)
            product_id = line.product_id
            adjustment = apply_sale_line(
                line, user_id=user_id, enforce_stock=enforce, note=note, repository=repo,
            )
        except PdvError as exc:
            _warn(warnings, PartialFailureWarning(
                step=STEP_STOCK,
                message=exc.message,
                sale_id=sale_id,
                sale_line_id=line_id,
                product_id=product_id,
                details=dict(exc.details),
            ))
            continue
        if adjustment.applied:
            applied.append({"sale_line_id": line_id, **adjustment.to_dict()})
    return applied


def _apply_cash(
    repo: Repository,
    sale: dict,
    *,
    deadline: Deadline | None,
    warnings: list,
) -> bool:
    """Book the sale on its session; returns True when a movement was written."""
    if deadline_expired(deadline):
        _warn(warnings, PartialFailureWarning(
            step=STEP_CASH,
            message="Skipped: deadline exceeded",
            sale_id=sale["id"],
        ))
        return False
    try:
        if cash_session_service.find_sale_movement(sale["id"], repo) is not None:
            return False
        cash_session_service.append_sale_movement(
            sale["cash_session_id"],
            sale["id"],
            sale["net_total_cents"],
            sale["payment_method"],
            description=f"Sale {sale['display_number']}",
            user_id=sale["operator_id"],
            repository=repo,
        )
    except PdvError as exc:
        _warn(warnings, PartialFailureWarning(
            step=STEP_CASH,
            message=exc.message,
            sale_id=sale["id"],
            details=dict(exc.details),
        ))
        return False
    return True


# =============================================================================
# COMMIT
# =============================================================================

def commit_sale(
    cart: Cart,
    payment_method: str,
    operator_id: int,
    session_id: int,
    discount: Discount | None = None,
    customer_id: int | None = None,
    *,
    deadline: Deadline | None = None,
    repository: Repository | None = None,
) -> SaleSummary:
    """
    Commit the cart as a COMPLETED sale.

    Raises (nothing written):
        EmptyCartError, InvalidPaymentMethodError, InvalidDiscountError,
        NoOpenSessionError, NotFoundError, InsufficientStockError,
        ValidationError (product or customer from another store)

    Raises (header/lines failed, compensated):
        PersistenceError, DeadlineExceededError

    Returns the summary with any follow-up warnings; the cart is cleared.
    """
    repo = get_repository(repository)

    if cart is None or cart.is_empty:
        raise EmptyCartError("Cannot commit an empty cart")
    method = _normalize_payment_method(payment_method)
    if discount is not None and not isinstance(discount, Discount):
        raise InvalidDiscountError("Invalid discount")

    session = repo.get(CashSession, session_id) if session_id is not None else None
    if session is None or session.status != SESSION_OPEN or session.operator_id != operator_id:
        raise NoOpenSessionError(
            "No open cash session for this operator",
            details={"session_id": session_id, "operator_id": operator_id},
        )
    store_id = session.store_id

    if customer_id is not None:
        customer = repo.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})
        if customer.store_id != store_id:
            raise ValidationError(
                "Customer belongs to another store",
                details={"customer_id": customer_id, "store_id": store_id},
            )

    quantities = cart.quantities()
    for product_id in quantities:
        if get_product(product_id, repo).store_id != store_id:
            raise ValidationError(
                "Product belongs to another store",
                details={"product_id": product_id, "store_id": store_id},
            )
    if current_app.config.get("PDV_ENFORCE_STOCK", False):
        check_availability(quantities, repo)

    gross = cart.subtotal()
    discount_cents = cart.discount_amount(discount)
    net = cart.total(discount)

    # Header
    if deadline is not None:
        deadline.check("sale header")

    def _write_header() -> tuple[int, int]:
        with repo.transaction():
            number = next_sale_number(store_id, repo)
            new_id = repo.insert(Sale, {
                "store_id": store_id,
                "sale_number": number,
                "customer_id": customer_id,
                "operator_id": operator_id,
                "cash_session_id": session_id,
                "gross_total_cents": gross,
                "discount_type": discount.kind if discount else None,
                "discount_value": discount.value if discount else None,
                "discount_cents": discount_cents,
                "net_total_cents": net,
                "payment_method": method,
                "status": SALE_COMPLETED,
                "created_at": utcnow(),
            })
        return new_id, number

    attempts = int(current_app.config.get("PDV_RETRY_ATTEMPTS", 3))
    try:
        sale_id, sale_number = run_with_retry(_write_header, attempts=attempts)
    except PersistenceError:
        current_app.logger.exception("Failed to write sale header (store %s)", store_id)
        raise

    # Lines
    line_ids: list[int] = []
    try:
        for line in cart.lines:
            if deadline is not None:
                deadline.check("sale lines")
            line_ids.append(repo.insert(SaleLine, {
                "sale_id": sale_id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "line_total_cents": line.subtotal_cents,
            }))
    except (PersistenceError, DeadlineExceededError) as exc:
        _compensate(repo, sale_id, line_ids, exc)
        raise

    display_number = f"{sale_number:06d}"
    warnings: list[PartialFailureWarning] = []

    # Follow-ups
    _apply_stock(
        repo,
        sale_id,
        line_ids,
        user_id=operator_id,
        note=f"Sale {display_number}",
        deadline=deadline,
        warnings=warnings,
    )
    _apply_cash(
        repo,
        {
            "id": sale_id,
            "cash_session_id": session_id,
            "net_total_cents": net,
            "payment_method": method,
            "display_number": display_number,
            "operator_id": operator_id,
        },
        deadline=deadline,
        warnings=warnings,
    )

    cart.clear()
    current_app.logger.info(
        "Sale %s committed: %s cents (%s) on session %s, %s warning(s)",
        display_number, net, method, session_id, len(warnings),
    )

    return SaleSummary(
        sale_id=sale_id,
        sale_number=sale_number,
        display_number=display_number,
        gross_total_cents=gross,
        discount_cents=discount_cents,
        net_total_cents=net,
        payment_method=method,
        status=SALE_COMPLETED,
        warnings=warnings,
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_sale(
    sale_id: int,
    *,
    user_id: int | None = None,
    repository: Repository | None = None,
) -> ReconciliationSummary:
    """
    Re-apply the follow-ups a committed sale is missing.

    Lines with a SALE journal entry and an already booked cash movement are
    left alone, so this can run any number of times.
    """
    repo = get_repository(repository)
    sale = get_sale(sale_id, repo)
    if sale.status == SALE_CANCELLED:
        raise AlreadyCancelledError(
            "Cannot reconcile a cancelled sale", details={"sale_id": sale_id},
        )

    snapshot = {
        "id": sale.id,
        "cash_session_id": sale.cash_session_id,
        "net_total_cents": sale.net_total_cents,
        "payment_method": sale.payment_method,
        "display_number": sale.display_number,
        "operator_id": sale.operator_id,
    }
    line_ids = [line.id for line in get_sale_lines(sale_id, repo)]

    summary = ReconciliationSummary(sale_id=sale_id)
    summary.stock_applied = _apply_stock(
        repo,
        sale_id,
        line_ids,
        user_id=user_id if user_id is not None else sale.operator_id,
        note=f"Sale {snapshot['display_number']} (reconciled)",
        deadline=None,
        warnings=summary.warnings,
    )
    summary.cash_applied = _apply_cash(repo, snapshot, deadline=None, warnings=summary.warnings)

    current_app.logger.info(
        "Sale %s reconciled: %s stock line(s), cash %s, %s warning(s)",
        snapshot["display_number"],
        len(summary.stock_applied),
        "booked" if summary.cash_applied else "unchanged",
        len(summary.warnings),
    )
    return summary
