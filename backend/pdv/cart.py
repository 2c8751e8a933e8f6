"""
In-memory cart for the register.

The cart never touches the database. It snapshots name, code and unit price
when a product is added so the committed sale reflects what the customer was
shown, then is handed explicitly to sales_service.commit_sale().
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError
from .money import Discount, apply_discount, discount_amount


@dataclass
class CartLine:
    product_id: int
    name: str
    code: str | None
    unit_price_cents: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "code": self.code,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
        }


class Cart:
    """Line items keyed by product; one line per product."""

    def __init__(self):
        self._lines: dict[int, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self):
        return iter(list(self._lines.values()))

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get_line(self, product_id: int) -> CartLine | None:
        return self._lines.get(product_id)

    def add_line(self, product, quantity: int = 1) -> CartLine:
        """
        Add `quantity` units of `product` (anything with id, name, price_cents).

        Adding a product already in the cart increases that line's quantity;
        the original price snapshot is kept.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be a positive integer", details={"quantity": quantity})
        if product.price_cents is None:
            raise ValidationError("Product has no price", details={"product_id": product.id})
        if product.price_cents < 0:
            raise ValidationError("Product price cannot be negative", details={"product_id": product.id})

        line = self._lines.get(product.id)
        if line is not None:
            line.quantity += quantity
            return line

        line = CartLine(
            product_id=product.id,
            name=product.name,
            code=getattr(product, "code", None),
            unit_price_cents=product.price_cents,
            quantity=quantity,
        )
        self._lines[product.id] = line
        return line

    def update_quantity(self, product_id: int, delta: int) -> CartLine:
        """Shift a line's quantity by delta; never drops below 1 (use remove_line)."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("Quantity change must be an integer", details={"delta": delta})
        line = self._lines.get(product_id)
        if line is None:
            raise ValidationError("Product not in cart", details={"product_id": product_id})
        line.quantity = max(1, line.quantity + delta)
        return line

    def remove_line(self, product_id: int) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def quantities(self) -> dict[int, int]:
        return {pid: line.quantity for pid, line in self._lines.items()}

    def subtotal(self) -> int:
        return sum(line.subtotal_cents for line in self._lines.values())

    def discount_amount(self, discount: Discount | None = None) -> int:
        return discount_amount(self.subtotal(), discount)

    def total(self, discount: Discount | None = None) -> int:
        return apply_discount(self.subtotal(), discount)

    def to_dict(self, discount: Discount | None = None) -> dict:
        return {
            "lines": [line.to_dict() for line in self._lines.values()],
            "subtotal_cents": self.subtotal(),
            "discount_cents": self.discount_amount(discount),
            "total_cents": self.total(discount),
        }
