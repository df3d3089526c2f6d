"""Подведение итогов аукционного события"""
import logging
from decimal import Decimal
from typing import List
from sqlalchemy import select, update, union
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.bid import Bid, SilentBid
from database.models.event import AuctionEvent, EventStatus
from database.models.item import EventItem, ItemStatus, SubmissionStatus
from database.models.platform_fee import PlatformFee, FeeStatus, FeeType
from services.dto import EventCompletionResult, EventFeeSummary, FeeSummaryItem, WinningBidSummary
from services.errors import NotFoundError, StateConflictError
from services.fees import calculate_platform_fee, to_money
from services.notifications import AuctionLost, AuctionWon, NotificationPort, notify_safely
from services.winners import resolve_winners

logger = logging.getLogger(__name__)


class SettlementService:
    """Завершение события: победители, комиссии, непроданные лоты, уведомления"""

    def __init__(self, settings: Settings, notifier: NotificationPort):
        self._settings = settings
        self._notifier = notifier

    async def process_event_completion(
        self,
        session: AsyncSession,
        event_id: str
    ) -> EventCompletionResult:
        """Завершить событие и определить победителей"""
        result = await session.execute(
            select(AuctionEvent)
            .where(AuctionEvent.id == event_id)
            .with_for_update()
        )
        event = result.scalar_one_or_none()

        if not event:
            raise NotFoundError("Event not found")

        # Повторное подведение итогов задвоило бы комиссии
        if event.status != EventStatus.ACTIVE.value:
            raise StateConflictError(f"Event cannot be settled from status '{event.status}'")

        winning_bids = await resolve_winners(session, event, self._settings)

        total_raised = to_money(sum((bid.winning_amount for bid in winning_bids), Decimal("0")))
        total_platform_fees = to_money(sum((bid.platform_fee for bid in winning_bids), Decimal("0")))

        # Все изменения статусов - одной транзакцией
        try:
            event.status = EventStatus.ENDED.value
            event.total_raised = total_raised

            for bid in winning_bids:
                await session.execute(
                    update(EventItem)
                    .where(EventItem.id == bid.item_id)
                    .values(
                        status=ItemStatus.WON.value,
                        current_bid=bid.winning_amount,
                        winner_id=bid.winner_id
                    )
                )
                session.add(PlatformFee(
                    user_id=event.owner_id,
                    organization_id=event.organization_id,
                    event_id=event.id,
                    fee_type=FeeType.ITEM_SALE.value,
                    amount=bid.platform_fee,
                    status=FeeStatus.PENDING.value,
                ))

            await self._mark_unsold_items(session, event.id)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(
            f"Событие {event.id} завершено: победителей {len(winning_bids)}, "
            f"собрано {total_raised}, комиссия {total_platform_fees}"
        )

        await self._send_result_notifications(session, event.id, winning_bids)

        return EventCompletionResult(
            event_id=event.id,
            total_raised=total_raised,
            total_platform_fees=total_platform_fees,
            winning_bids=winning_bids,
        )

    async def _mark_unsold_items(self, session: AsyncSession, event_id: str) -> None:
        """Активные лоты без единой ставки -> unsold"""
        result = await session.execute(
            select(EventItem).where(
                EventItem.event_id == event_id,
                EventItem.status == ItemStatus.ACTIVE.value,
                EventItem.id.not_in(select(Bid.item_id)),
                EventItem.id.not_in(select(SilentBid.item_id)),
            )
        )
        for item in result.scalars().all():
            item.status = ItemStatus.UNSOLD.value
            logger.debug(f"Лот {item.id} не продан")

    async def _send_result_notifications(
        self,
        session: AsyncSession,
        event_id: str,
        winning_bids: List[WinningBidSummary]
    ) -> None:
        for bid in winning_bids:
            await notify_safely(self._notifier, AuctionWon(
                user_id=bid.winner_id,
                item_title=bid.item_title,
                amount=bid.winning_amount,
                event_id=event_id,
                item_id=bid.item_id,
            ))

        winners = {bid.item_id: bid.winner_id for bid in winning_bids}
        if not winners:
            return

        item_ids = list(winners)
        bidders = union(
            select(Bid.item_id, Bid.bidder_id).where(Bid.item_id.in_(item_ids)),
            select(SilentBid.item_id, SilentBid.bidder_id).where(SilentBid.item_id.in_(item_ids)),
        ).subquery()
        result = await session.execute(
            select(bidders.c.item_id, bidders.c.bidder_id, EventItem.title)
            .join(EventItem, EventItem.id == bidders.c.item_id)
            .order_by(bidders.c.item_id, bidders.c.bidder_id)
        )

        for row in result.all():
            if winners.get(row.item_id) == row.bidder_id:
                continue
            await notify_safely(self._notifier, AuctionLost(
                user_id=row.bidder_id,
                item_title=row.title,
                event_id=event_id,
                item_id=row.item_id,
            ))

    async def get_event_fee_summary(self, session: AsyncSession, event_id: str) -> EventFeeSummary:
        """Сводка по выигрышным ставкам и оплатам события"""
        result = await session.execute(
            select(EventItem)
            .where(
                EventItem.event_id == event_id,
                EventItem.submission_status == SubmissionStatus.APPROVED.value,
            )
            .order_by(EventItem.created_at)
        )

        items: List[FeeSummaryItem] = []
        for item in result.scalars().all():
            has_winner = item.status in (ItemStatus.WON.value, ItemStatus.SOLD.value)
            winning_bid = to_money(item.current_bid) if has_winner and item.current_bid is not None else None
            payment_status = None
            if item.status == ItemStatus.SOLD.value:
                payment_status = FeeStatus.PAID.value
            elif item.status == ItemStatus.WON.value:
                payment_status = FeeStatus.PENDING.value
            items.append(FeeSummaryItem(
                id=item.id,
                title=item.title,
                winning_bid=winning_bid,
                platform_fee=calculate_platform_fee(winning_bid, self._settings) if winning_bid else None,
                payment_status=payment_status,
            ))

        return EventFeeSummary(
            total_raised=to_money(sum((i.winning_bid or Decimal("0") for i in items), Decimal("0"))),
            total_platform_fees=to_money(sum((i.platform_fee or Decimal("0") for i in items), Decimal("0"))),
            pending_payments=sum(1 for i in items if i.payment_status == FeeStatus.PENDING.value),
            completed_payments=sum(1 for i in items if i.payment_status == FeeStatus.PAID.value),
            items=items,
        )
