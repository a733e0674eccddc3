"""Startup configuration checks and pricing constants."""
import importlib
from decimal import Decimal

import pytest

from storefront import config
from storefront.config import REQUIRED_SETTINGS, missing_settings, validate_config
from storefront.services.pricing import calculate_breakdown, to_money


def complete_settings():
    return {name: "value" for name in REQUIRED_SETTINGS}


def test_complete_configuration_passes():
    validate_config(complete_settings())


def test_missing_settings_are_named():
    values = {**complete_settings(), "PAYPAL_CLIENT_SECRET": None, "AUTH_SECRET": ""}

    assert missing_settings(values) == ["PAYPAL_CLIENT_SECRET", "AUTH_SECRET"]
    with pytest.raises(RuntimeError, match="PAYPAL_CLIENT_SECRET, AUTH_SECRET"):
        validate_config(values)


def test_environment_configuration_is_complete():
    assert missing_settings() == []


def test_unset_environment_reports_every_required_setting(monkeypatch):
    for name in REQUIRED_SETTINGS:
        monkeypatch.delenv(name, raising=False)
    try:
        reloaded = importlib.reload(config)
        assert reloaded.missing_settings() == list(REQUIRED_SETTINGS)
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_breakdown_sums_to_total():
    breakdown = calculate_breakdown([(Decimal("3.33"), 3), (Decimal("0.05"), 1)])

    assert breakdown.item_total == Decimal("10.04")
    assert breakdown.shipping == Decimal("10.00")
    assert breakdown.tax == Decimal("1.00")
    assert breakdown.total == breakdown.item_total + breakdown.shipping + breakdown.tax


def test_money_rounds_half_up():
    assert to_money("0.125") == Decimal("0.13")
    assert to_money(2) == Decimal("2.00")
