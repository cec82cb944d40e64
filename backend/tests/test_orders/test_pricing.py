"""
Tests for server-side pricing and currency rounding.
"""

from decimal import Decimal

import pytest

from storefront.services.orders.pricing import (
    OrderPricer,
    currency_exponent,
    quantize_amount,
    to_minor_units,
)


# ============================================================================
# Currency Helpers
# ============================================================================


class TestCurrencyRounding:
    @pytest.mark.parametrize(
        "amount,currency,expected",
        [
            (Decimal("0.125"), "INR", Decimal("0.13")),
            (Decimal("0.124"), "INR", Decimal("0.12")),
            (Decimal("2.5"), "JPY", Decimal("3")),
            (Decimal("1.0005"), "KWD", Decimal("1.001")),
        ],
    )
    def test_quantize_rounds_half_up(self, amount, currency, expected):
        assert quantize_amount(amount, currency) == expected

    def test_exponent_lookup_is_case_insensitive(self):
        assert currency_exponent("jpy") == 0
        assert currency_exponent("INR") == 2

    @pytest.mark.parametrize(
        "amount,currency,expected",
        [
            (Decimal("300.00"), "INR", 30000),
            (Decimal("19.999"), "USD", 2000),
            (Decimal("1500"), "JPY", 1500),
        ],
    )
    def test_to_minor_units(self, amount, currency, expected):
        assert to_minor_units(amount, currency) == expected


# ============================================================================
# Order Pricer
# ============================================================================


class TestOrderPricer:
    """Tests for line and order totals."""

    def test_price_line(self):
        line = OrderPricer().price_line(1, 3, Decimal("33.335"), "INR")

        assert line.unit_price == Decimal("33.34")
        assert line.line_total == Decimal("100.02")

    def test_defaults_charge_nothing_extra(self):
        pricer = OrderPricer()
        lines = [pricer.price_line(1, 2, Decimal("150.00"), "INR")]

        totals = pricer.totals(lines, "INR")

        assert totals.subtotal == Decimal("300.00")
        assert totals.shipping_amount == Decimal("0.00")
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("300.00")

    def test_shipping_waived_at_threshold(self):
        pricer = OrderPricer(
            shipping_fee=Decimal("49.00"),
            free_shipping_threshold=Decimal("500.00"),
        )

        below = pricer.totals([pricer.price_line(1, 1, Decimal("499.99"), "INR")], "INR")
        at = pricer.totals([pricer.price_line(1, 1, Decimal("500.00"), "INR")], "INR")

        assert below.shipping_amount == Decimal("49.00")
        assert at.shipping_amount == Decimal("0.00")

    def test_total_is_sum_of_rounded_parts(self):
        pricer = OrderPricer(
            tax_rate=Decimal("0.075"),
            shipping_fee=Decimal("10.00"),
            free_shipping_threshold=Decimal("1000.00"),
        )
        lines = [
            pricer.price_line(1, 3, Decimal("10.99"), "USD"),
            pricer.price_line(2, 1, Decimal("5.05"), "USD"),
        ]

        totals = pricer.totals(lines, "USD")

        assert totals.subtotal == Decimal("38.02")
        assert totals.tax_amount == Decimal("2.85")
        assert totals.total_amount == totals.subtotal + totals.shipping_amount + totals.tax_amount
        assert totals.total_amount == Decimal("50.87")
