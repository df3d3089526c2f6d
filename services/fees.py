"""Расчет комиссий платформы и сумм выплат"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict
from config import Settings
from services.dto import PayoutAmounts

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Any) -> Decimal:
    """Округлить сумму до центов"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Сумма в минимальных единицах валюты для процессора"""
    return int((to_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def calculate_platform_fee(amount: Any, settings: Settings) -> Decimal:
    """Комиссия с выигрышной ставки: процент, но не меньше минимума"""
    percentage_fee = Decimal(str(amount)) * settings.PLATFORM_FEE_PERCENT / HUNDRED
    return to_money(max(percentage_fee, settings.PLATFORM_FEE_MIN))


def calculate_stripe_fees(amount: Any, settings: Settings) -> Decimal:
    """Оценка комиссии процессора (без округления)"""
    return Decimal(str(amount)) * settings.STRIPE_FEE_PERCENT / HUNDRED + settings.STRIPE_FEE_FIXED


def calculate_payout_amounts(gross_amount: Any, item_count: int, settings: Settings) -> PayoutAmounts:
    """
    Расчет выплаты организации.

    Каждая составляющая округляется до центов независимо от остальных,
    поэтому сумма составляющих может отличаться от валовой суммы на цент.
    """
    gross = Decimal(str(gross_amount))
    stripe_fees = calculate_stripe_fees(gross, settings)
    # Фиксированная плата за каждый проданный лот
    platform_fee = item_count * settings.PLATFORM_FEE_PER_ITEM
    after_fees = gross - stripe_fees - platform_fee
    reserve_amount = after_fees * settings.RESERVE_PERCENT / HUNDRED
    net_payout = after_fees - reserve_amount

    return PayoutAmounts(
        gross_amount=gross,
        stripe_fees=to_money(stripe_fees),
        platform_fee=to_money(platform_fee),
        reserve_amount=to_money(reserve_amount),
        net_payout=max(Decimal("0.00"), to_money(net_payout)),
    )


def get_tier_flat_fee(tier: str, settings: Settings) -> Decimal:
    """Фиксированная плата за публикацию события по тарифу"""
    if tier not in settings.TIER_LIMITS:
        raise ValueError(f"Неизвестный тариф: {tier}")
    return to_money(settings.TIER_LIMITS[tier].flat_fee)


def get_pricing_info(settings: Settings) -> Dict[str, Any]:
    """Тарифы и комиссия для отображения"""
    minimum = to_money(settings.PLATFORM_FEE_MIN)
    return {
        "tiers": {
            name: {"max_items": tier.max_items, "flat_fee": to_money(tier.flat_fee)}
            for name, tier in settings.TIER_LIMITS.items()
        },
        "platform_fee_percent": settings.PLATFORM_FEE_PERCENT,
        "minimum_fee": minimum,
        "description": (
            f"{settings.PLATFORM_FEE_PERCENT:f}% platform fee on winning bids "
            f"(minimum ${minimum} per item)"
        ),
    }
