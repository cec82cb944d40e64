"""
Cash on delivery settlement rules.

Cash on delivery is accepted only for order totals inside a configured range
and carries a surcharge: a percentage of the order total, rounded to the
currency's minor unit and clamped between a minimum and maximum charge.
"""

from dataclasses import dataclass
from decimal import Decimal

from storefront.core.config import Settings
from storefront.services.orders.pricing import quantize_amount
from storefront.services.payments.errors import (
    PaymentAmountError,
    PaymentMethodDisabledError,
)


@dataclass(frozen=True)
class SettlementQuote:
    """What the customer owes under a settlement method."""

    amount: Decimal
    surcharge: Decimal
    total_due: Decimal


class CashOnDeliveryPolicy:
    """Bounds and surcharge for offline settlement."""

    def __init__(
        self,
        enabled: bool = True,
        min_amount: Decimal = Decimal("100.00"),
        max_amount: Decimal = Decimal("50000.00"),
        charge_percent: Decimal = Decimal("2.0"),
        charge_min: Decimal = Decimal("20.00"),
        charge_max: Decimal = Decimal("100.00"),
    ):
        self.enabled = enabled
        self.min_amount = Decimal(min_amount)
        self.max_amount = Decimal(max_amount)
        self.charge_percent = Decimal(charge_percent)
        self.charge_min = Decimal(charge_min)
        self.charge_max = Decimal(charge_max)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CashOnDeliveryPolicy":
        return cls(
            enabled=settings.cod_enabled,
            min_amount=settings.cod_min_amount,
            max_amount=settings.cod_max_amount,
            charge_percent=settings.cod_charge_percent,
            charge_min=settings.cod_charge_min,
            charge_max=settings.cod_charge_max,
        )

    def surcharge(self, amount: Decimal, currency: str) -> Decimal:
        """Percentage surcharge, rounded, then clamped to the configured range."""
        charge = quantize_amount(amount * self.charge_percent / Decimal(100), currency)
        charge = max(charge, self.charge_min)
        charge = min(charge, self.charge_max)
        return quantize_amount(charge, currency)

    def quote(self, amount: Decimal, currency: str) -> SettlementQuote:
        """
        Raises:
            PaymentMethodDisabledError: If cash on delivery is switched off
            PaymentAmountError: If ``amount`` is outside the allowed range
        """
        if not self.enabled:
            raise PaymentMethodDisabledError("Cash on delivery is not available")

        if amount < self.min_amount or amount > self.max_amount:
            raise PaymentAmountError(
                "Order total is outside the cash on delivery range",
                amount=str(amount),
                min_amount=str(self.min_amount),
                max_amount=str(self.max_amount),
            )

        surcharge = self.surcharge(amount, currency)
        return SettlementQuote(
            amount=amount,
            surcharge=surcharge,
            total_due=amount + surcharge,
        )
