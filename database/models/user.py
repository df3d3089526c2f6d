"""Модель пользователя"""
from sqlalchemy import Column, BigInteger, String, DateTime, Boolean
from sqlalchemy.sql import func
from database.connection import Base, generate_id


class User(Base):
    """Модель пользователя (участник торгов, организатор, донор)"""
    __tablename__ = "users"

    id = Column(String(128), primary_key=True, default=generate_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=True)
    telegram_id = Column(BigInteger, unique=True, nullable=True, index=True)  # Канал уведомлений
    stripe_customer_id = Column(String(100), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
