"""Планировщик расчетов: старт и завершение событий, выплаты, резервы"""
import asyncio
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from config import Settings
from database.models.event import AuctionEvent, EventStatus
from database.models.item import EventItem, ItemStatus, SubmissionStatus
from database.models.payout import OrganizationPayout
from services.clock import utcnow
from services.payouts import PayoutService
from services.reserves import ReserveService
from services.settlement import SettlementService

logger = logging.getLogger(__name__)


class SettlementScheduler:
    """
    Периодические задачи конвейера расчетов.

    Каждое событие обрабатывается в своей сессии, ошибка одного
    события не останавливает обработку остальных.
    """

    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        settlement: SettlementService,
        payouts: PayoutService,
        reserves: ReserveService
    ):
        self._settings = settings
        self._session_maker = session_maker
        self._settlement = settlement
        self._payouts = payouts
        self._reserves = reserves
        self._task = None

    async def activate_started_events(self) -> int:
        """Запустить торги по опубликованным событиям, время которых наступило"""
        async with self._session_maker() as session:
            result = await session.execute(
                select(AuctionEvent).where(
                    AuctionEvent.status == EventStatus.SCHEDULED.value,
                    AuctionEvent.start_time <= utcnow()
                )
            )
            events = result.scalars().all()

            for event in events:
                event.status = EventStatus.ACTIVE.value
                items = await session.execute(
                    select(EventItem).where(
                        EventItem.event_id == event.id,
                        EventItem.status == ItemStatus.PENDING.value,
                        EventItem.submission_status == SubmissionStatus.APPROVED.value
                    )
                )
                for item in items.scalars().all():
                    item.status = ItemStatus.ACTIVE.value
                logger.info(f"Событие {event.id} запущено")

            await session.commit()
            return len(events)

    async def settle_ended_events(self) -> int:
        """Подвести итоги событий, время которых истекло"""
        async with self._session_maker() as session:
            result = await session.execute(
                select(AuctionEvent.id).where(
                    AuctionEvent.status == EventStatus.ACTIVE.value,
                    AuctionEvent.end_time <= utcnow()
                )
            )
            event_ids = list(result.scalars().all())

        settled = 0
        for event_id in event_ids:
            try:
                async with self._session_maker() as session:
                    await self._settlement.process_event_completion(session, event_id)
                settled += 1
            except Exception as e:
                logger.error(f"Ошибка при завершении события {event_id}: {e}")
        return settled

    async def create_missing_payouts(self) -> int:
        """Создать выплаты по завершенным событиям, у которых их еще нет"""
        async with self._session_maker() as session:
            result = await session.execute(
                select(AuctionEvent.id)
                .outerjoin(OrganizationPayout, OrganizationPayout.event_id == AuctionEvent.id)
                .where(
                    AuctionEvent.status == EventStatus.ENDED.value,
                    AuctionEvent.organization_id.is_not(None),
                    OrganizationPayout.id.is_(None)
                )
            )
            event_ids = list(result.scalars().all())

        created = 0
        for event_id in event_ids:
            try:
                async with self._session_maker() as session:
                    await self._payouts.create_payout_record(session, event_id)
                created += 1
            except Exception as e:
                logger.error(f"Ошибка при создании выплаты по событию {event_id}: {e}")
        return created

    async def run_payout_sweep(self) -> None:
        """Выплаты и резервы"""
        async with self._session_maker() as session:
            payouts = await self._payouts.process_eligible_payouts(session)
        for error in payouts.errors:
            logger.warning(f"Выплата не выполнена: {error}")

        async with self._session_maker() as session:
            reserves = await self._reserves.process_reserve_releases(session)
        for error in reserves.errors:
            logger.warning(f"Резерв не освобожден: {error}")

    async def tick(self, run_sweep: bool) -> None:
        await self.activate_started_events()
        await self.settle_ended_events()
        await self.create_missing_payouts()
        if run_sweep:
            logger.info("Запуск обработки выплат и резервов")
            await self.run_payout_sweep()

    async def scheduler_loop(self):
        """Основной цикл планировщика"""
        interval = self._settings.SETTLEMENT_CHECK_INTERVAL_SECONDS
        sweep_every = max(1, self._settings.PAYOUT_SWEEP_INTERVAL_MINUTES * 60 // interval)
        # Первая обработка выплат сразу после старта
        ticks_passed = sweep_every

        while True:
            try:
                await self.tick(run_sweep=ticks_passed >= sweep_every)
                if ticks_passed >= sweep_every:
                    ticks_passed = 0
                ticks_passed += 1
            except Exception as e:
                logger.error(f"Ошибка в планировщике: {e}")

            await asyncio.sleep(interval)

    def start(self):
        """Запустить планировщик"""
        self._task = asyncio.create_task(self.scheduler_loop())
        logger.info("Планировщик расчетов запущен")
