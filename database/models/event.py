"""Модель аукционного события"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base, generate_id


class EventStatus(str, enum.Enum):
    """Статус события"""
    DRAFT = "draft"  # Черновик
    SCHEDULED = "scheduled"  # Оплачено и опубликовано
    ACTIVE = "active"  # Идут торги
    ENDED = "ended"  # Завершено, итоги подведены
    CANCELLED = "cancelled"  # Отменено


class AuctionType(str, enum.Enum):
    """Тип аукциона"""
    STANDARD = "standard"  # Открытые ставки
    SILENT = "silent"  # Закрытые ставки


class EventTier(str, enum.Enum):
    """Тариф публикации"""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    UNLIMITED = "unlimited"


class AuctionEvent(Base):
    """Модель аукционного события"""
    __tablename__ = "auction_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    owner_id = Column(String(128), ForeignKey("users.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    auction_type = Column(String(20), default=AuctionType.STANDARD.value, nullable=False)
    tier = Column(String(20), default=EventTier.SMALL.value, nullable=False)
    status = Column(String(50), default=EventStatus.DRAFT.value, nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    total_raised = Column(Numeric(12, 2), nullable=True)  # Заполняется при подведении итогов
    fee_id = Column(String(36), nullable=True)  # Платеж за публикацию

    # Сводка по выплате
    payout_status = Column(String(50), nullable=True)
    payout_eligible_at = Column(DateTime(timezone=True), nullable=True)
    payout_amount = Column(Numeric(12, 2), nullable=True)
    payout_held_reason = Column(String(255), nullable=True)
    payout_transferred_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    # Связи
    items = relationship("EventItem", back_populates="event", order_by="EventItem.created_at")
