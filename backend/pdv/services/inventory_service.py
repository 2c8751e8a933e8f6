# Overview: Service-layer operations for inventory; applies signed stock deltas.

# backend/pdv/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, PersistenceError, ValidationError
from ..models import Product, SaleLine, StockMovement
from ..models.inventory import MOVEMENT_ADJUST, MOVEMENT_SALE, MOVEMENT_SALE_CANCEL
from .concurrency import run_with_retry
from .persistence import Repository, get_repository
"""
PDV Inventory Invariants (authoritative)

- Product.stock is changed only here, with an atomic `stock = stock + delta`.
- Every delta is journaled in StockMovement inside the same DB transaction.
- A sale line is decremented at most once (SALE) and restored at most once
  (SALE_CANCEL). Replaying either is a no-op, which is what makes the
  follow-up steps of commit and cancel retryable.
- Stock may go negative unless the caller passes floor=0 (PDV_ENFORCE_STOCK).
"""


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    quantity_delta: int
    stock_after: int | None
    applied: bool
    movement_id: int | None = None
    skipped_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "stock_after": self.stock_after,
            "applied": self.applied,
            "movement_id": self.movement_id,
            "skipped_reason": self.skipped_reason,
        }


def _retry_attempts() -> int:
    return int(current_app.config.get("PDV_RETRY_ATTEMPTS", 3))


def get_product(product_id: int, repository: Repository | None = None) -> Product:
    product = get_repository(repository).get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def get_stock(product_id: int, repository: Repository | None = None) -> int:
    return get_product(product_id, repository).stock


def find_sale_line_movement(
    sale_line_id: int,
    movement_type: str,
    repository: Repository | None = None,
) -> StockMovement | None:
    rows = get_repository(repository).query(
        StockMovement,
        {"sale_line_id": sale_line_id, "movement_type": movement_type},
        limit=1,
    )
    return rows[0] if rows else None


def check_availability(quantities: dict[int, int], repository: Repository | None = None) -> None:
    """
    Raise InsufficientStockError listing every product whose stock is below
    the requested quantity. Nothing is written.
    """
    insufficient = []
    for product_id, qty in quantities.items():
        on_hand = get_stock(product_id, repository)
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })

    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock to commit sale",
            details={"items": insufficient},
        )


def adjust_stock(
    product_id: int,
    quantity_delta: int,
    *,
    movement_type: str = MOVEMENT_ADJUST,
    sale_id: int | None = None,
    sale_line_id: int | None = None,
    note: str | None = None,
    user_id: int | None = None,
    floor: int | None = None,
    repository: Repository | None = None,
) -> StockAdjustment:
    """
    Apply a signed delta to a product's stock and journal it.

    When sale_line_id is given the adjustment is idempotent per
    (sale_line_id, movement_type): a replay returns applied=False.
    Transient DB errors are retried; InsufficientStockError is raised when
    `floor` would be crossed.
    """
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta == 0:
        raise ValidationError("quantity_delta must be a non-zero integer", details={"quantity_delta": quantity_delta})

    repo = get_repository(repository)
    product = get_product(product_id, repo)
    store_id = product.store_id
    min_stock = product.min_stock

    if sale_line_id is not None:
        existing = find_sale_line_movement(sale_line_id, movement_type, repo)
        if existing is not None:
            return StockAdjustment(
                product_id=product_id,
                quantity_delta=quantity_delta,
                stock_after=existing.stock_after,
                applied=False,
                movement_id=existing.id,
                skipped_reason="already_applied",
            )

    def _op() -> StockAdjustment:
        with repo.transaction():
            stock_after = repo.increment_field(Product, product_id, "stock", quantity_delta, floor=floor)
            if stock_after is None:
                raise InsufficientStockError(
                    "Insufficient stock",
                    details={"product_id": product_id, "requested_quantity": -quantity_delta},
                )
            movement_id = repo.insert(StockMovement, {
                "store_id": store_id,
                "product_id": product_id,
                "movement_type": movement_type,
                "quantity_delta": quantity_delta,
                "stock_after": stock_after,
                "sale_id": sale_id,
                "sale_line_id": sale_line_id,
                "note": note,
                "created_by_user_id": user_id,
            })
        return StockAdjustment(
            product_id=product_id,
            quantity_delta=quantity_delta,
            stock_after=stock_after,
            applied=True,
            movement_id=movement_id,
        )

    try:
        adjustment = run_with_retry(_op, attempts=_retry_attempts())
    except PersistenceError:
        # A concurrent replay may have won the unique (sale_line_id, type) race
        if sale_line_id is not None:
            existing = find_sale_line_movement(sale_line_id, movement_type, repo)
            if existing is not None:
                return StockAdjustment(
                    product_id=product_id,
                    quantity_delta=quantity_delta,
                    stock_after=existing.stock_after,
                    applied=False,
                    movement_id=existing.id,
                    skipped_reason="already_applied",
                )
        raise

    if quantity_delta < 0 and adjustment.stock_after is not None and adjustment.stock_after <= min_stock:
        current_app.logger.info(
            "Product %s at or below minimum stock (%s <= %s)",
            product_id, adjustment.stock_after, min_stock,
        )
    return adjustment


def apply_sale_line(
    line: SaleLine,
    *,
    user_id: int | None = None,
    enforce_stock: bool = False,
    note: str | None = None,
    repository: Repository | None = None,
) -> StockAdjustment:
    """Decrement stock for a committed sale line (once)."""
    return adjust_stock(
        line.product_id,
        -line.quantity,
        movement_type=MOVEMENT_SALE,
        sale_id=line.sale_id,
        sale_line_id=line.id,
        note=note,
        user_id=user_id,
        floor=0 if enforce_stock else None,
        repository=repository,
    )


def reverse_sale_line(
    line: SaleLine,
    *,
    user_id: int | None = None,
    note: str | None = None,
    repository: Repository | None = None,
) -> StockAdjustment:
    """
    Restore stock taken by a sale line (once).

    A line whose decrement was never applied has nothing to restore and is
    skipped, so a commit whose stock follow-up failed still cancels back to
    the pre-sale stock level.
    """
    repo = get_repository(repository)
    if find_sale_line_movement(line.id, MOVEMENT_SALE, repo) is None:
        return StockAdjustment(
            product_id=line.product_id,
            quantity_delta=line.quantity,
            stock_after=None,
            applied=False,
            skipped_reason="never_decremented",
        )
    return adjust_stock(
        line.product_id,
        line.quantity,
        movement_type=MOVEMENT_SALE_CANCEL,
        sale_id=line.sale_id,
        sale_line_id=line.id,
        note=note,
        user_id=user_id,
        repository=repo,
    )
