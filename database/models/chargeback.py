"""Модель чарджбэка"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Boolean
from sqlalchemy.sql import func
import enum
from database.connection import Base, generate_id


class ChargebackStatus(str, enum.Enum):
    """Статус спора"""
    OPEN = "open"
    WON = "won"  # Спор выигран платформой
    LOST = "lost"  # Спор выиграл покупатель
    CLOSED = "closed"


class Chargeback(Base):
    """Модель чарджбэка"""
    __tablename__ = "chargebacks"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    event_id = Column(String(36), ForeignKey("auction_events.id"), nullable=True, index=True)
    payout_id = Column(String(36), ForeignKey("organization_payouts.id"), nullable=True, index=True)
    stripe_dispute_id = Column(String(255), nullable=False, unique=True)
    stripe_payment_intent_id = Column(String(255), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(String(100), nullable=True)
    status = Column(String(50), default=ChargebackStatus.OPEN.value, nullable=False, index=True)
    deducted_from_reserve = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
