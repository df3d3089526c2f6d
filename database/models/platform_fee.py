"""Модель комиссии платформы"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
import enum
from database.connection import Base, generate_id


class FeeStatus(str, enum.Enum):
    """Статус комиссии"""
    PENDING = "pending"  # Ожидает оплаты
    PAID = "paid"  # Оплачена
    REFUNDED = "refunded"  # Возвращена


class FeeType(str, enum.Enum):
    """Тип комиссии"""
    ITEM_SALE = "item_sale"  # С выигрышной ставки
    EVENT_SMALL = "event_small"  # Публикация события
    EVENT_MEDIUM = "event_medium"
    EVENT_LARGE = "event_large"
    EVENT_UNLIMITED = "event_unlimited"

    @classmethod
    def for_tier(cls, tier: str) -> "FeeType":
        return cls(f"event_{tier}")


class PlatformFee(Base):
    """Модель комиссии платформы"""
    __tablename__ = "platform_fees"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=True)  # Кто платит
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    event_id = Column(String(36), ForeignKey("auction_events.id"), nullable=True, index=True)
    fee_type = Column(String(50), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(50), default=FeeStatus.PENDING.value, nullable=False, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refund_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
