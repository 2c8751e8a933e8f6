# Overview: Pytest coverage for money parsing, formatting and discounts.

import pytest
from decimal import Decimal

from pdv.errors import InvalidAmountError, InvalidDiscountError
from pdv.money import (
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    Discount,
    apply_discount,
    discount_amount,
    format_currency,
    format_discount,
    parse_amount,
    parse_cents,
)


class TestDiscount:

    def test_percent_is_stored_in_basis_points(self):
        discount = Discount.percent("10")
        assert discount.kind == DISCOUNT_PERCENTAGE
        assert discount.value == 1000
        assert discount.percent_value == Decimal("10")

    def test_percent_accepts_fractional_figures(self):
        assert Discount.percent("12,5").value == 1250

    def test_percent_over_100_rejected(self):
        with pytest.raises(InvalidDiscountError):
            Discount.percent(101)

    def test_negative_fixed_rejected(self):
        with pytest.raises(InvalidDiscountError):
            Discount.fixed(-1)

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidDiscountError):
            Discount("BOGO", 100)

    def test_non_integer_value_rejected(self):
        with pytest.raises(InvalidDiscountError):
            Discount(DISCOUNT_FIXED, 1.5)

    def test_from_payload_percentage(self):
        discount = Discount.from_payload({"type": "percentage", "percent": "10"})
        assert discount == Discount(DISCOUNT_PERCENTAGE, 1000)

    def test_from_payload_fixed_amount_string(self):
        assert Discount.from_payload({"type": "FIXED", "amount": "5,00"}) == Discount.fixed(500)

    def test_from_payload_fixed_cents(self):
        assert Discount.from_payload({"kind": "FIXED", "amount_cents": 250}) == Discount.fixed(250)

    def test_from_payload_fixed_float_cents_rejected(self):
        with pytest.raises(InvalidDiscountError):
            Discount.from_payload({"type": "FIXED", "amount_cents": 2.5})

    def test_from_payload_empty_means_no_discount(self):
        assert Discount.from_payload(None) is None
        assert Discount.from_payload({}) is None

    def test_from_payload_missing_magnitude(self):
        with pytest.raises(InvalidDiscountError):
            Discount.from_payload({"type": "PERCENTAGE"})

    def test_from_payload_unknown_type(self):
        with pytest.raises(InvalidDiscountError):
            Discount.from_payload({"type": "COUPON", "amount_cents": 100})


class TestDiscountMath:

    def test_ten_percent_of_twenty(self):
        """subtotal 20.00 with 10% -> 18.00"""
        assert discount_amount(2000, Discount.percent(10)) == 200
        assert apply_discount(2000, Discount.percent(10)) == 1800

    @pytest.mark.parametrize("discount", [None, Discount.percent(0), Discount.fixed(0)])
    def test_zero_discounts_are_identity(self, discount):
        assert apply_discount(1234, discount) == 1234

    def test_fixed_larger_than_subtotal_clamps_to_zero(self):
        assert discount_amount(1000, Discount.fixed(5000)) == 1000
        assert apply_discount(1000, Discount.fixed(5000)) == 0

    def test_full_percentage(self):
        assert apply_discount(999, Discount.percent(100)) == 0

    def test_percentage_rounds_half_up(self):
        assert discount_amount(335, Discount.percent(10)) == 34
        assert discount_amount(334, Discount.percent(10)) == 33

    @pytest.mark.parametrize("subtotal", [0, 1, 99, 1000, 123457])
    @pytest.mark.parametrize("discount", [Discount.percent("33.33"), Discount.fixed(150), Discount.percent(100)])
    def test_total_bounded_by_zero_and_subtotal(self, subtotal, discount):
        total = apply_discount(subtotal, discount)
        assert 0 <= total <= subtotal


class TestFormatting:

    def test_format_currency_groups_thousands(self):
        assert format_currency(123456) == "R$ 1.234,56"

    def test_format_currency_small_and_negative(self):
        assert format_currency(5) == "R$ 0,05"
        assert format_currency(-150) == "-R$ 1,50"

    def test_format_currency_custom_symbol(self):
        assert format_currency(1000000, "US$") == "US$ 10.000,00"

    def test_format_discount(self):
        assert format_discount(Discount.percent(10)) == "10%"
        assert format_discount(Discount.percent("12.5")) == "12.5%"
        assert format_discount(Discount.fixed(500)) == "R$ 5,00"
        assert format_discount(None) == ""


class TestParsing:

    @pytest.mark.parametrize("raw,cents", [
        ("10,50", 1050),
        ("1.234,56", 123456),
        ("R$ 5", 500),
        ("R$ 7,25", 725),
        ("10.50", 1050),
        ("1,234.56", 123456),
        (Decimal("0.005"), 1),
        (3, 300),
        (2.675, 268),
    ])
    def test_parse_amount(self, raw, cents):
        assert parse_amount(raw) == cents

    @pytest.mark.parametrize("raw", ["", "abc", "1e3", "inf", None, True, [1]])
    def test_parse_amount_rejects_garbage(self, raw):
        with pytest.raises(InvalidAmountError):
            parse_amount(raw)

    def test_parse_amount_negative(self):
        with pytest.raises(InvalidAmountError):
            parse_amount("-5")
        assert parse_amount("-5", allow_negative=True) == -500

    def test_parse_amount_maximum(self):
        with pytest.raises(InvalidAmountError):
            parse_amount("10.000.000,00")

    def test_parse_cents_strict(self):
        assert parse_cents(100) == 100
        assert parse_cents(" 250 ") == 250
        for bad in (1.5, "1.5", "1,5", "1e2", True, "", None):
            with pytest.raises(InvalidAmountError):
                parse_cents(bad)
