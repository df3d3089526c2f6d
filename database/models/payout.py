"""Модели выплат организациям и резервов"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Boolean, Text
from sqlalchemy.sql import func
import enum
import json
from database.connection import Base, generate_id


class PayoutStatus(str, enum.Enum):
    """Статус выплаты"""
    PENDING = "pending"  # Ждет окончания периода удержания
    ELIGIBLE = "eligible"
    PROCESSING = "processing"  # Перевод инициирован
    COMPLETED = "completed"  # Деньги отправлены
    HELD = "held"  # Требует ручной проверки
    FAILED = "failed"


class ReserveStatus(str, enum.Enum):
    """Статус резерва"""
    HELD = "held"
    RELEASED = "released"
    FORFEITED = "forfeited"  # Чарджбэки превысили резерв


class OrganizationPayout(Base):
    """Выплата организации по завершенному событию (не более одной на событие)"""
    __tablename__ = "organization_payouts"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    event_id = Column(String(36), ForeignKey("auction_events.id"), nullable=False, unique=True)

    gross_amount = Column(Numeric(12, 2), nullable=False)  # Сумма продаж
    stripe_fees = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    reserve_amount = Column(Numeric(12, 2), nullable=False)
    net_payout = Column(Numeric(12, 2), nullable=False)

    stripe_transfer_id = Column(String(255), nullable=True, index=True)
    status = Column(String(50), default=PayoutStatus.PENDING.value, nullable=False, index=True)
    failure_reason = Column(Text, nullable=True)

    flags = Column(Text, nullable=True)  # JSON массив флагов
    requires_review = Column(Boolean, default=False, nullable=False)
    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)

    eligible_at = Column(DateTime(timezone=True), nullable=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def flag_list(self) -> list[str]:
        return json.loads(self.flags or "[]")

    def add_flag(self, flag: str) -> None:
        flags = self.flag_list
        if flag not in flags:
            flags.append(flag)
        self.flags = json.dumps(flags)


class PayoutReserve(Base):
    """Резерв, удерживаемый после выплаты на случай чарджбэков"""
    __tablename__ = "payout_reserves"

    id = Column(String(36), primary_key=True, default=generate_id)
    payout_id = Column(String(36), ForeignKey("organization_payouts.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    withheld_amount = Column(Numeric(12, 2), nullable=True)  # Удержано в счет чарджбэков
    release_at = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(50), default=ReserveStatus.HELD.value, nullable=False, index=True)
    stripe_transfer_id = Column(String(255), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
