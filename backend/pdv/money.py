"""
Money & discount helpers.

All amounts are integer cents. Decimal is used only at the edges: parsing
what an operator typed and percentage math. Percentages are basis points
(1% = 100 bps), the same convention the store tax rate uses.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import InvalidAmountError, InvalidDiscountError

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_KINDS = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

BPS_PER_UNIT = 10_000  # 100% in basis points

# Upper bound for a single amount: R$ 9.999.999,99
MAX_AMOUNT_CENTS = 999_999_999


@dataclass(frozen=True)
class Discount:
    """
    A discount on the whole cart.

    value is in basis points for PERCENTAGE and in cents for FIXED. FIXED is
    clamped to the subtotal when applied; PERCENTAGE outside 0-100% is invalid.
    """
    kind: str
    value: int

    def __post_init__(self):
        if self.kind not in DISCOUNT_KINDS:
            raise InvalidDiscountError(
                f"Invalid discount type {self.kind!r}",
                details={"allowed": list(DISCOUNT_KINDS)},
            )
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise InvalidDiscountError("Discount magnitude must be an integer")
        if self.value < 0:
            raise InvalidDiscountError("Discount magnitude cannot be negative")
        if self.kind == DISCOUNT_PERCENTAGE and self.value > BPS_PER_UNIT:
            raise InvalidDiscountError("Percentage discount cannot exceed 100%")

    @classmethod
    def percent(cls, value) -> "Discount":
        """Build a percentage discount from a percent figure (10 -> 10%)."""
        pct = _to_decimal(value, error=InvalidDiscountError, label="discount percent")
        bps = (pct * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return cls(DISCOUNT_PERCENTAGE, int(bps))

    @classmethod
    def fixed(cls, cents: int) -> "Discount":
        return cls(DISCOUNT_FIXED, cents)

    @classmethod
    def from_payload(cls, data: dict | None) -> "Discount | None":
        """
        Parse a JSON discount:
        {"type": "PERCENTAGE", "percent": "10"} or
        {"type": "FIXED", "amount_cents": 500} / {"type": "FIXED", "amount": "5,00"}
        """
        if not data:
            return None
        kind = str(data.get("type") or data.get("kind") or "").strip().upper()
        if kind == DISCOUNT_PERCENTAGE:
            if data.get("percent") is None:
                raise InvalidDiscountError("percent required for PERCENTAGE discount")
            return cls.percent(data["percent"])
        if kind == DISCOUNT_FIXED:
            if data.get("amount_cents") is not None:
                try:
                    return cls.fixed(parse_cents(data["amount_cents"]))
                except InvalidAmountError as exc:
                    raise InvalidDiscountError(exc.message) from exc
            if data.get("amount") is not None:
                return cls.fixed(parse_amount(data["amount"]))
            raise InvalidDiscountError("amount_cents or amount required for FIXED discount")
        raise InvalidDiscountError(
            f"Invalid discount type {kind!r}",
            details={"allowed": list(DISCOUNT_KINDS)},
        )

    @property
    def percent_value(self) -> Decimal:
        return Decimal(self.value) / 100

    def to_dict(self) -> dict:
        return {"type": self.kind, "value": self.value}


def discount_amount(subtotal_cents: int, discount: Discount | None) -> int:
    """Cents actually deducted from subtotal (never more than the subtotal)."""
    if discount is None or discount.value == 0 or subtotal_cents <= 0:
        return 0
    if discount.kind == DISCOUNT_PERCENTAGE:
        # nearest-cent rounding (half-up)
        amount = (subtotal_cents * discount.value + BPS_PER_UNIT // 2) // BPS_PER_UNIT
    else:
        amount = discount.value
    return min(amount, subtotal_cents)


def apply_discount(subtotal_cents: int, discount: Discount | None) -> int:
    return max(subtotal_cents - discount_amount(subtotal_cents, discount), 0)


# =============================================================================
# FORMATTING
# =============================================================================

def format_currency(cents: int, symbol: str = "R$") -> str:
    """pt-BR currency: 123456 -> 'R$ 1.234,56'."""
    sign = "-" if cents < 0 else ""
    units, minor = divmod(abs(int(cents)), 100)
    grouped = f"{units:,}".replace(",", ".")
    return f"{sign}{symbol} {grouped},{minor:02d}"


def format_discount(discount: Discount | None, symbol: str = "R$") -> str:
    if discount is None or discount.value == 0:
        return ""
    if discount.kind == DISCOUNT_PERCENTAGE:
        return f"{discount.percent_value.normalize():f}%"
    return format_currency(discount.value, symbol)


# =============================================================================
# PARSING
# =============================================================================

def _to_decimal(value, *, error=InvalidAmountError, label: str = "amount") -> Decimal:
    if value is None or isinstance(value, bool):
        raise error(f"{label} is required")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, float):
        dec = Decimal(str(value))
    elif isinstance(value, str):
        dec = _parse_localized(value, error=error, label=label)
    else:
        raise error(f"{label} must be a number")
    if not dec.is_finite():
        raise error(f"{label} must be a finite number")
    return dec


def _parse_localized(raw: str, *, error, label: str) -> Decimal:
    s = raw.strip().replace("R$", "").replace(" ", "").replace("\u00a0", "")
    if not s:
        raise error(f"{label} is required")
    if "," in s and "." in s:
        # whichever separator comes last is the decimal mark
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")
    elif s.count(".") > 1:
        s = s.replace(".", "")
    if "e" in s.lower():
        raise error(f"{label} must be a plain number (scientific notation not allowed)")
    try:
        return Decimal(s)
    except InvalidOperation:
        raise error(f"{label} must be a number", details={"value": raw})


def parse_amount(value, *, allow_negative: bool = False) -> int:
    """
    Parse an operator-entered amount into cents.

    Accepts '10,50', '1.234,56', '10.50', 'R$ 5', Decimal, int and float.
    Rounds half-up to the cent.
    """
    dec = _to_decimal(value)
    cents = int((dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return _check_range(cents, allow_negative=allow_negative)


def parse_cents(value, *, allow_negative: bool = False) -> int:
    """
    Strict integer-cents coercion for JSON payloads.

    Rejects floats, booleans, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise InvalidAmountError("amount_cents must be an integer")
    if isinstance(value, int):
        return _check_range(value, allow_negative=allow_negative)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidAmountError("amount_cents must be an integer")
        if "e" in stripped.lower():
            raise InvalidAmountError("amount_cents must be a plain integer (scientific notation not allowed)")
        if "." in stripped or "," in stripped:
            raise InvalidAmountError("amount_cents must be an integer (no decimals)")
        try:
            return _check_range(int(stripped), allow_negative=allow_negative)
        except ValueError:
            raise InvalidAmountError("amount_cents must be an integer")
    if isinstance(value, float):
        raise InvalidAmountError("amount_cents must be an integer, not a decimal")
    raise InvalidAmountError("amount_cents must be an integer")


def _check_range(cents: int, *, allow_negative: bool) -> int:
    if cents < 0 and not allow_negative:
        raise InvalidAmountError("Amount cannot be negative", details={"amount_cents": cents})
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise InvalidAmountError(
            "Amount exceeds maximum",
            details={"amount_cents": cents, "max_cents": MAX_AMOUNT_CENTS},
        )
    return cents
