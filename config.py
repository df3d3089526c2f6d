"""Конфигурация приложения"""
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class TierLimit(BaseModel):
    """Лимиты и фиксированная плата тарифа публикации"""
    max_items: Optional[int]
    flat_fee: Decimal


class Settings(BaseSettings):
    """Настройки приложения"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Telegram Bot (уведомления и админ-команды)
    BOT_TOKEN: str = ""
    ADMIN_USER_IDS: str = ""

    # Database
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_NAME: str = ""

    # Платежный процессор
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    CURRENCY: str = "usd"

    # Комиссия платформы с выигрышной ставки (платит покупатель)
    PLATFORM_FEE_PERCENT: Decimal = Decimal("5")
    PLATFORM_FEE_MIN: Decimal = Decimal("0.50")
    # Фиксированная комиссия за проданный лот при выплате (платит организация)
    PLATFORM_FEE_PER_ITEM: Decimal = Decimal("1")

    # Оценка комиссии процессора
    STRIPE_FEE_PERCENT: Decimal = Decimal("2.9")
    STRIPE_FEE_FIXED: Decimal = Decimal("0.30")

    # Выплаты
    HOLD_PERIOD_DAYS: int = 7
    RESERVE_PERCENT: Decimal = Decimal("10")
    RESERVE_HOLD_DAYS: int = 30
    TAX_FORM_THRESHOLD: Decimal = Decimal("600")

    # Антифрод
    HIGH_VALUE_THRESHOLD: Decimal = Decimal("5000")
    NEW_ORGANIZATION_DAYS: int = 14
    SUSPICIOUS_BIDDER_MIN_ITEMS: int = 5
    SUSPICIOUS_BIDDER_SHARE: Decimal = Decimal("0.5")
    LOW_COMPETITION_SHARE: Decimal = Decimal("0.7")

    # Лимиты автоматической выплаты по уровню доверия
    AUTO_PAYOUT_LIMITS: Dict[str, Decimal] = {
        "new": Decimal("500"),
        "established": Decimal("2500"),
        "trusted": Decimal("10000"),
        "verified_np": Decimal("25000"),
        "flagged": Decimal("0"),
    }

    # Тарифы публикации события
    TIER_LIMITS: Dict[str, TierLimit] = {
        "small": TierLimit(max_items=25, flat_fee=Decimal("49")),
        "medium": TierLimit(max_items=100, flat_fee=Decimal("99")),
        "large": TierLimit(max_items=500, flat_fee=Decimal("199")),
        "unlimited": TierLimit(max_items=None, flat_fee=Decimal("399")),
    }

    # Планировщик
    SETTLEMENT_CHECK_INTERVAL_SECONDS: int = 60
    PAYOUT_SWEEP_INTERVAL_MINUTES: int = 60

    @property
    def admin_ids_list(self) -> List[int]:
        """Список ID администраторов"""
        if not self.ADMIN_USER_IDS:
            return []
        return [int(uid.strip()) for uid in self.ADMIN_USER_IDS.split(",") if uid.strip()]

    @property
    def database_url(self) -> str:
        """URL подключения к базе данных"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
