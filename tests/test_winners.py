from decimal import Decimal
import pytest
from database.models.event import AuctionType
from database.models.item import ItemStatus, SubmissionStatus
from services.winners import resolve_winners
from tests.helpers import make_event, make_item, make_org, make_user, place_bid

pytestmark = pytest.mark.asyncio


async def test_highest_bid_wins(session, settings):
    org = await make_org(session)
    event = await make_event(session, org)
    item = await make_item(session, event, title="Quilt")
    low, high = await make_user(session, "low"), await make_user(session, "high")
    await place_bid(session, item, low, 100, minutes_ago=10)
    await place_bid(session, item, high, 120, minutes_ago=5)

    winners = await resolve_winners(session, event, settings)

    assert len(winners) == 1
    assert winners[0].winner_id == high.id
    assert winners[0].item_title == "Quilt"
    assert winners[0].winning_amount == Decimal("120.00")
    assert winners[0].platform_fee == Decimal("6.00")


async def test_equal_bids_earliest_wins_every_time(session, settings):
    org = await make_org(session)
    event = await make_event(session, org)
    item = await make_item(session, event)
    early, late = await make_user(session, "early"), await make_user(session, "late")
    await place_bid(session, item, late, 50, minutes_ago=1)
    await place_bid(session, item, early, 50, minutes_ago=30)

    for _ in range(3):
        winners = await resolve_winners(session, event, settings)
        assert [w.winner_id for w in winners] == [early.id]


async def test_silent_auction_ranks_sealed_bids(session, settings):
    org = await make_org(session)
    event = await make_event(session, org, auction_type=AuctionType.SILENT.value)
    item = await make_item(session, event)
    visible, sealed = await make_user(session, "visible"), await make_user(session, "sealed")
    await place_bid(session, item, visible, 500)
    await place_bid(session, item, sealed, 80, silent=True)

    winners = await resolve_winners(session, event, settings)

    assert [w.winner_id for w in winners] == [sealed.id]


async def test_only_active_approved_items_with_bids(session, settings):
    org = await make_org(session)
    event = await make_event(session, org)
    bidder = await make_user(session, "bidder")
    active = await make_item(session, event, title="Active")
    rejected = await make_item(session, event, title="Rejected", submission_status=SubmissionStatus.REJECTED.value)
    removed = await make_item(session, event, title="Removed", status=ItemStatus.REMOVED.value)
    await make_item(session, event, title="No bids")
    for item in (active, rejected, removed):
        await place_bid(session, item, bidder, 10)

    winners = await resolve_winners(session, event, settings)

    assert [w.item_id for w in winners] == [active.id]
    assert winners[0].platform_fee == Decimal("0.50")
