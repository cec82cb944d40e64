"""
Server-side order pricing.

Prices come from the catalog snapshot taken inside the order's atomic unit;
nothing a client sends is used for money. All amounts are rounded half-up to
the currency's minor unit.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

# ISO 4217 currencies without a two-digit minor unit.
CURRENCY_EXPONENTS: dict[str, int] = {
    "BHD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "VND": 0,
}
DEFAULT_EXPONENT = 2


def currency_exponent(currency: str) -> int:
    """Number of minor-unit digits for ``currency``."""
    return CURRENCY_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round ``amount`` half-up to the minor unit of ``currency``."""
    exponent = Decimal(1).scaleb(-currency_exponent(currency))
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to an integer count of minor units."""
    return int(quantize_amount(amount, currency).scaleb(currency_exponent(currency)))


@dataclass(frozen=True)
class PricedLine:
    """One priced order line."""

    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    """Computed order amounts."""

    subtotal: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


class OrderPricer:
    """
    Computes line totals, shipping, tax and the order total.

    Attributes:
        tax_rate: Fraction of the subtotal charged as tax
        shipping_fee: Flat shipping charge
        free_shipping_threshold: Subtotal at which shipping is waived
    """

    def __init__(
        self,
        tax_rate: Decimal = Decimal("0"),
        shipping_fee: Decimal = Decimal("0"),
        free_shipping_threshold: Decimal = Decimal("500"),
    ):
        self.tax_rate = Decimal(tax_rate)
        self.shipping_fee = Decimal(shipping_fee)
        self.free_shipping_threshold = Decimal(free_shipping_threshold)

    def price_line(
        self,
        product_id: int,
        quantity: int,
        unit_price: Decimal,
        currency: str,
    ) -> PricedLine:
        unit_price = quantize_amount(unit_price, currency)
        return PricedLine(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            line_total=quantize_amount(unit_price * quantity, currency),
        )

    def totals(self, lines: Iterable[PricedLine], currency: str) -> OrderTotals:
        """
        Compute order totals.

        ``total == subtotal + shipping + tax`` holds exactly because each
        component is rounded before it is summed.
        """
        subtotal = quantize_amount(
            sum((line.line_total for line in lines), Decimal("0")),
            currency,
        )

        if subtotal >= self.free_shipping_threshold:
            shipping = Decimal("0")
        else:
            shipping = self.shipping_fee
        shipping = quantize_amount(shipping, currency)

        tax = quantize_amount(subtotal * self.tax_rate, currency)

        return OrderTotals(
            subtotal=subtotal,
            shipping_amount=shipping,
            tax_amount=tax,
            total_amount=subtotal + shipping + tax,
        )
