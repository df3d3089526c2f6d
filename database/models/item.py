"""Модель лота события"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base, generate_id


class ItemStatus(str, enum.Enum):
    """Статус лота"""
    PENDING = "pending"
    ACTIVE = "active"
    WON = "won"  # Есть победитель, ожидается оплата
    SOLD = "sold"  # Победитель оплатил
    UNSOLD = "unsold"  # Ставок не было
    CANCELLED = "cancelled"
    REMOVED = "removed"


class SubmissionStatus(str, enum.Enum):
    """Статус заявки донора"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventItem(Base):
    """Модель лота"""
    __tablename__ = "event_items"

    id = Column(String(36), primary_key=True, default=generate_id)
    event_id = Column(String(36), ForeignKey("auction_events.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    status = Column(String(50), default=ItemStatus.PENDING.value, nullable=False, index=True)
    submission_status = Column(String(50), default=SubmissionStatus.APPROVED.value, nullable=False)
    current_bid = Column(Numeric(12, 2), nullable=True)
    winner_id = Column(String(128), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи
    event = relationship("AuctionEvent", back_populates="items")
