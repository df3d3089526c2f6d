"""Учет чарджбэков"""
import logging
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from database.models.chargeback import Chargeback, ChargebackStatus
from database.models.payout import OrganizationPayout, PayoutReserve, ReserveStatus
from services.clock import utcnow
from services.fees import to_money
from services.trust import TrustManager

logger = logging.getLogger(__name__)


class ChargebackService:
    """Регистрация споров и пересчет доверия организации"""

    def __init__(self, trust: TrustManager):
        self._trust = trust

    async def record_chargeback(
        self,
        session: AsyncSession,
        dispute_id: str,
        payment_intent_id: str,
        organization_id: str,
        event_id: Optional[str],
        amount: Decimal,
        reason: Optional[str]
    ) -> str:
        """Зарегистрировать открытый спор. Повторная доставка возвращает существующую запись."""
        existing = await session.scalar(
            select(Chargeback.id).where(Chargeback.stripe_dispute_id == dispute_id)
        )
        if existing:
            logger.info(f"Спор {dispute_id} уже зарегистрирован")
            return existing

        payout_id = None
        if event_id:
            payout_id = await session.scalar(
                select(OrganizationPayout.id).where(OrganizationPayout.event_id == event_id)
            )

        chargeback = Chargeback(
            organization_id=organization_id,
            event_id=event_id,
            payout_id=payout_id,
            stripe_dispute_id=dispute_id,
            stripe_payment_intent_id=payment_intent_id,
            amount=to_money(amount),
            reason=reason,
            status=ChargebackStatus.OPEN.value,
        )
        session.add(chargeback)
        await session.commit()
        logger.warning(
            f"Чарджбэк {dispute_id} на {chargeback.amount} для организации {organization_id} "
            f"(выплата {payout_id})"
        )

        await self._trust.update_trust_level(session, organization_id)
        return chargeback.id

    async def update_chargeback_status(self, session: AsyncSession, dispute_id: str, status: str) -> None:
        """Обновить статус спора. Проигранный спор вычитается из резерва при его освобождении."""
        new_status = ChargebackStatus(status)

        result = await session.execute(
            select(Chargeback).where(Chargeback.stripe_dispute_id == dispute_id)
        )
        chargeback = result.scalar_one_or_none()
        if not chargeback:
            logger.warning(f"Спор {dispute_id} не найден")
            return

        chargeback.status = new_status.value
        chargeback.resolved_at = utcnow()

        if new_status == ChargebackStatus.LOST and chargeback.payout_id:
            held_reserve = await session.scalar(
                select(PayoutReserve.id).where(
                    PayoutReserve.payout_id == chargeback.payout_id,
                    PayoutReserve.status == ReserveStatus.HELD.value,
                )
            )
            if held_reserve:
                chargeback.deducted_from_reserve = True

        await session.commit()
        logger.info(f"Спор {dispute_id} -> {new_status.value}")

        await self._trust.update_trust_level(session, chargeback.organization_id)
