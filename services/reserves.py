"""Освобождение резервов по выплатам"""
import logging
from decimal import Decimal
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from database.models.chargeback import Chargeback, ChargebackStatus
from database.models.organization import Organization
from database.models.payout import PayoutReserve, ReserveStatus
from services.clock import utcnow
from services.dto import ReserveRunResult
from services.fees import to_cents, to_money
from services.processor import PaymentProcessor

logger = logging.getLogger(__name__)


class ReserveService:
    """Возврат резервов организациям за вычетом проигранных чарджбэков"""

    def __init__(self, processor: PaymentProcessor):
        self._processor = processor

    async def process_reserve_releases(self, session: AsyncSession) -> ReserveRunResult:
        result = ReserveRunResult()

        ids_result = await session.execute(
            select(PayoutReserve.id)
            .where(
                PayoutReserve.status == ReserveStatus.HELD.value,
                PayoutReserve.release_at <= utcnow(),
            )
            .order_by(PayoutReserve.release_at)
        )
        reserve_ids = list(ids_result.scalars().all())

        for reserve_id in reserve_ids:
            try:
                await self._process_reserve(session, reserve_id, result)
            except Exception as e:
                # Резерв остается held и будет обработан при следующем запуске
                logger.error(f"Ошибка освобождения резерва {reserve_id}: {e}")
                await session.rollback()
                result.errors.append(f"Reserve {reserve_id}: {e}")

        logger.info(
            f"Обработка резервов: освобождено {result.released}, списано {result.forfeited}, "
            f"ошибок {len(result.errors)}"
        )
        return result

    async def _process_reserve(self, session: AsyncSession, reserve_id: str, result: ReserveRunResult) -> None:
        reserve = await session.get(PayoutReserve, reserve_id)

        chargeback_total = await session.scalar(
            select(func.sum(Chargeback.amount)).where(
                Chargeback.payout_id == reserve.payout_id,
                Chargeback.status == ChargebackStatus.LOST.value,
            )
        ) or Decimal("0")
        chargeback_total = to_money(chargeback_total)

        if chargeback_total >= reserve.amount:
            reserve.status = ReserveStatus.FORFEITED.value
            reserve.withheld_amount = reserve.amount
            reserve.released_at = utcnow()
            await session.commit()
            result.forfeited += 1
            logger.info(f"Резерв {reserve.id} списан: чарджбэки {chargeback_total} >= {reserve.amount}")
            return

        release_amount = to_money(reserve.amount - chargeback_total)

        organization = await session.get(Organization, reserve.organization_id)
        if not organization.can_receive_payouts:
            logger.warning(f"Организация {organization.id} не подключила выплаты, резерв {reserve.id} ждет")
            result.errors.append(f"Reserve {reserve.id}: Organization not set up for payouts")
            return

        transfer = await self._processor.create_transfer(
            to_cents(release_amount),
            organization.stripe_account_id,
            metadata={
                "reserveId": reserve.id,
                "payoutId": reserve.payout_id,
                "organizationId": organization.id,
            },
            idempotency_key=f"reserve-{reserve.id}",
            description="Reserve release",
        )

        reserve.status = ReserveStatus.RELEASED.value
        reserve.stripe_transfer_id = transfer.id
        reserve.released_at = utcnow()
        reserve.withheld_amount = chargeback_total
        reserve.amount = release_amount
        await session.commit()
        result.released += 1
        logger.info(f"Резерв {reserve.id} освобожден: {release_amount} (удержано {chargeback_total})")
