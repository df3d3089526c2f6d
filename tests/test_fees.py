from decimal import Decimal
import pytest
from services.fees import (
    calculate_payout_amounts, calculate_platform_fee, get_pricing_info,
    get_tier_flat_fee, to_cents, to_money
)


@pytest.mark.parametrize("amount, expected", [
    (0, "0.50"),
    (5, "0.50"),
    (10, "0.50"),
    (100, "5.00"),
    (120, "6.00"),
    ("33.33", "1.67"),
])
def test_platform_fee_has_minimum(settings, amount, expected):
    assert calculate_platform_fee(amount, settings) == Decimal(expected)


def test_payout_breakdown_rounds_each_part(settings):
    amounts = calculate_payout_amounts(1000, 10, settings)

    assert amounts.gross_amount == Decimal("1000")
    assert amounts.stripe_fees == Decimal("29.30")
    assert amounts.platform_fee == Decimal("10.00")
    assert amounts.reserve_amount == Decimal("96.07")
    assert amounts.net_payout == Decimal("864.63")


def test_payout_for_single_small_sale(settings):
    amounts = calculate_payout_amounts(Decimal("120"), 1, settings)

    assert amounts.stripe_fees == Decimal("3.78")
    assert amounts.reserve_amount == Decimal("11.52")
    assert amounts.net_payout == Decimal("103.70")


def test_net_payout_never_negative(settings):
    amounts = calculate_payout_amounts(0, 0, settings)
    assert amounts.net_payout == Decimal("0.00")


def test_money_helpers():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(Decimal("2.344")) == Decimal("2.34")
    assert to_cents(Decimal("126.00")) == 12600
    assert to_cents(Decimal("0.5")) == 50


def test_tier_flat_fee(settings):
    assert get_tier_flat_fee("small", settings) == Decimal("49.00")
    assert get_tier_flat_fee("unlimited", settings) == Decimal("399.00")
    with pytest.raises(ValueError):
        get_tier_flat_fee("huge", settings)


def test_pricing_info(settings):
    info = get_pricing_info(settings)

    assert info["tiers"]["medium"] == {"max_items": 100, "flat_fee": Decimal("99.00")}
    assert info["tiers"]["unlimited"]["max_items"] is None
    assert info["minimum_fee"] == Decimal("0.50")
    assert info["description"] == "5% platform fee on winning bids (minimum $0.50 per item)"
