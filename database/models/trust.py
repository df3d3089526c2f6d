"""Модель уровня доверия организации"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Integer
from sqlalchemy.sql import func
import enum
from database.connection import Base, generate_id


class TrustLevel(str, enum.Enum):
    """Уровень доверия"""
    NEW = "new"  # Первое событие
    ESTABLISHED = "established"  # 2+ успешных выплат
    TRUSTED = "trusted"  # 5+ успешных выплат
    VERIFIED_NP = "verified_np"  # Подтвержденная некоммерческая организация
    FLAGGED = "flagged"  # Есть проигранные чарджбэки


class OrganizationTrust(Base):
    """Уровень доверия организации (одна запись на организацию)"""
    __tablename__ = "organization_trust"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, unique=True)
    successful_events = Column(Integer, default=0, nullable=False)
    total_payouts = Column(Numeric(12, 2), default=0, nullable=False)
    chargeback_count = Column(Integer, default=0, nullable=False)
    chargeback_amount = Column(Numeric(12, 2), default=0, nullable=False)
    trust_level = Column(String(50), default=TrustLevel.NEW.value, nullable=False, index=True)
    auto_payout_limit = Column(Numeric(12, 2), default=500, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
