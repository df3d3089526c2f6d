"""Эвристики риска для выплат"""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Set, Tuple
from sqlalchemy import func, select, union
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.bid import Bid, SilentBid
from database.models.chargeback import Chargeback, ChargebackStatus
from database.models.event import AuctionEvent, EventStatus
from database.models.item import EventItem, ItemStatus
from database.models.organization import Organization
from services.clock import as_utc
from services.dto import FraudAssessment
from services.errors import NotFoundError

logger = logging.getLogger(__name__)

FIRST_EVENT = "first_event"
HIGH_VALUE = "high_value"
NEW_ORGANIZATION = "new_organization"
SUSPICIOUS_BIDDING = "suspicious_bidding"
LOW_COMPETITION = "low_competition"
CHARGEBACK_HISTORY = "chargeback_history"

WON_STATUSES = (ItemStatus.WON.value, ItemStatus.SOLD.value)


def has_suspicious_bidding(
    bids: Iterable[Tuple[str, str]],
    won_item_count: int,
    min_items: int,
    max_share: Decimal
) -> bool:
    """Один участник ставил на слишком большую долю выигранных лотов"""
    if won_item_count <= 0:
        return False
    items_by_bidder: Dict[str, Set[str]] = defaultdict(set)
    for item_id, bidder_id in bids:
        items_by_bidder[bidder_id].add(item_id)
    return any(
        len(items) > min_items and Decimal(len(items)) / won_item_count > max_share
        for items in items_by_bidder.values()
    )


def has_low_competition(
    bids: Iterable[Tuple[str, str]],
    won_item_ids: Iterable[str],
    max_share: Decimal
) -> bool:
    """Слишком много выигранных лотов с единственным участником"""
    won = set(won_item_ids)
    if not won:
        return False
    bidders_by_item: Dict[str, Set[str]] = defaultdict(set)
    for item_id, bidder_id in bids:
        if item_id in won:
            bidders_by_item[item_id].add(bidder_id)
    single_bidder_items = sum(1 for item_id in won if len(bidders_by_item[item_id]) == 1)
    return Decimal(single_bidder_items) / len(won) > max_share


def requires_review(flags: List[str]) -> bool:
    return (
        SUSPICIOUS_BIDDING in flags
        or CHARGEBACK_HISTORY in flags
        or (FIRST_EVENT in flags and HIGH_VALUE in flags)
    )


class FraudScorer:
    """Оценка риска пары событие/организация. Только чтение."""

    def __init__(self, settings: Settings):
        self._settings = settings

    async def assess(
        self,
        session: AsyncSession,
        event_id: str,
        organization_id: str
    ) -> FraudAssessment:
        settings = self._settings
        flags: List[str] = []

        result = await session.execute(
            select(AuctionEvent, Organization.created_at)
            .join(Organization, Organization.id == AuctionEvent.organization_id)
            .where(AuctionEvent.id == event_id)
        )
        row = result.first()
        if not row:
            raise NotFoundError("Event not found")
        event, org_created_at = row

        ended_count = await session.scalar(
            select(func.count(AuctionEvent.id)).where(
                AuctionEvent.organization_id == organization_id,
                AuctionEvent.status == EventStatus.ENDED.value,
            )
        )
        if (ended_count or 0) <= 1:
            flags.append(FIRST_EVENT)

        if (event.total_raised or Decimal("0")) > settings.HIGH_VALUE_THRESHOLD:
            flags.append(HIGH_VALUE)

        days_since_creation = (as_utc(event.created_at) - as_utc(org_created_at)).days
        if days_since_creation < settings.NEW_ORGANIZATION_DAYS:
            flags.append(NEW_ORGANIZATION)

        bids = await self._event_bids(session, event_id)
        won_result = await session.execute(
            select(EventItem.id).where(
                EventItem.event_id == event_id,
                EventItem.status.in_(WON_STATUSES),
            )
        )
        won_item_ids = list(won_result.scalars().all())

        if has_suspicious_bidding(
            bids,
            len(won_item_ids),
            settings.SUSPICIOUS_BIDDER_MIN_ITEMS,
            settings.SUSPICIOUS_BIDDER_SHARE,
        ):
            flags.append(SUSPICIOUS_BIDDING)

        if has_low_competition(bids, won_item_ids, settings.LOW_COMPETITION_SHARE):
            flags.append(LOW_COMPETITION)

        lost_chargebacks = await session.scalar(
            select(func.count(Chargeback.id)).where(
                Chargeback.organization_id == organization_id,
                Chargeback.status == ChargebackStatus.LOST.value,
            )
        )
        if (lost_chargebacks or 0) > 0:
            flags.append(CHARGEBACK_HISTORY)

        assessment = FraudAssessment(flags=flags, requires_review=requires_review(flags))
        if flags:
            logger.info(f"Флаги риска для события {event_id}: {', '.join(flags)}")
        return assessment

    async def _event_bids(self, session: AsyncSession, event_id: str) -> List[Tuple[str, str]]:
        """Пары (лот, участник) по обеим таблицам ставок"""
        item_ids = select(EventItem.id).where(EventItem.event_id == event_id)
        pairs = union(
            select(Bid.item_id, Bid.bidder_id).where(Bid.item_id.in_(item_ids)),
            select(SilentBid.item_id, SilentBid.bidder_id).where(SilentBid.item_id.in_(item_ids)),
        )
        result = await session.execute(pairs)
        return [(row[0], row[1]) for row in result.all()]
