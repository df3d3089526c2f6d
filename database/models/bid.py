"""Модели ставок"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
from database.connection import Base, generate_id


class Bid(Base):
    """Открытая ставка (стандартный аукцион)"""
    __tablename__ = "event_item_bids"

    id = Column(String(36), primary_key=True, default=generate_id)
    item_id = Column(String(36), ForeignKey("event_items.id"), nullable=False, index=True)
    bidder_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class SilentBid(Base):
    """Закрытая ставка (тихий аукцион)"""
    __tablename__ = "event_item_silent_bids"

    id = Column(String(36), primary_key=True, default=generate_id)
    item_id = Column(String(36), ForeignKey("event_items.id"), nullable=False, index=True)
    bidder_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
