"""
Tests for settings validation.
"""

import pytest
from pydantic import ValidationError

from storefront.core.config import Settings


def test_default_currency_is_upper_cased():
    assert Settings(default_currency="usd").default_currency == "USD"


@pytest.mark.parametrize("currency", ["INR", "USD", "JPY"])
def test_currencies_fitting_stored_scale_accepted(currency):
    assert Settings(default_currency=currency).default_currency == currency


@pytest.mark.parametrize("currency", ["KWD", "bhd"])
def test_three_decimal_currency_rejected(currency):
    """Amounts are stored with two decimals, so sub-cent currencies cannot be the catalog's."""
    with pytest.raises(ValidationError, match="minor-unit digits"):
        Settings(default_currency=currency)


def test_production_refuses_default_signing_secret():
    with pytest.raises(ValidationError, match="payment signing secret"):
        Settings(environment="production", secret_key="x" * 40)
