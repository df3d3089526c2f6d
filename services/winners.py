"""Определение победителей по лотам события"""
from itertools import groupby
from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.bid import Bid, SilentBid
from database.models.event import AuctionEvent, AuctionType
from database.models.item import EventItem, ItemStatus, SubmissionStatus
from database.models.user import User
from services.dto import WinningBidSummary
from services.fees import calculate_platform_fee, to_money


def bid_model_for(auction_type: str):
    """Таблица ставок для типа аукциона"""
    if auction_type == AuctionType.SILENT.value:
        return SilentBid
    return Bid


async def resolve_winners(
    session: AsyncSession,
    event: AuctionEvent,
    settings: Settings
) -> List[WinningBidSummary]:
    """
    Найти выигрышную ставку по каждому активному одобренному лоту.

    Побеждает максимальная сумма; при равенстве сумм - более ранняя ставка.
    Лоты без ставок в результат не попадают.
    """
    bid_model = bid_model_for(event.auction_type)

    result = await session.execute(
        select(
            bid_model.item_id,
            bid_model.bidder_id,
            bid_model.amount,
            EventItem.title,
            User.email,
            User.display_name,
        )
        .join(EventItem, EventItem.id == bid_model.item_id)
        .join(User, User.id == bid_model.bidder_id)
        .where(
            EventItem.event_id == event.id,
            EventItem.status == ItemStatus.ACTIVE.value,
            EventItem.submission_status == SubmissionStatus.APPROVED.value,
        )
        # id - последний ключ, чтобы порядок не зависел от порядка вставки
        .order_by(
            bid_model.item_id,
            bid_model.amount.desc(),
            bid_model.created_at.asc(),
            bid_model.id.asc(),
        )
    )

    winning_bids: List[WinningBidSummary] = []
    for item_id, rows in groupby(result.all(), key=lambda row: row.item_id):
        top = next(rows)
        amount = to_money(top.amount)
        winning_bids.append(
            WinningBidSummary(
                item_id=item_id,
                item_title=top.title,
                winner_id=top.bidder_id,
                winner_email=top.email,
                winner_name=top.display_name,
                winning_amount=amount,
                platform_fee=calculate_platform_fee(amount, settings),
            )
        )
    return winning_bids
