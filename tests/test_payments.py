from datetime import timedelta
from decimal import Decimal
import pytest
from sqlalchemy import func, select
from database.models.event import EventStatus
from database.models.item import ItemStatus
from database.models.organization import MemberRole, OrganizationMember
from database.models.platform_fee import FeeStatus, FeeType, PlatformFee
from services.errors import MetadataValidationError, NotFoundError, PermissionDeniedError, StateConflictError
from services.notifications import BidCancelled
from services.payments import PaymentService
from services.settlement import SettlementService
from tests.helpers import make_event, make_item, make_org, make_user, place_bid

pytestmark = pytest.mark.asyncio


@pytest.fixture
def payments(settings, processor, notifier):
    return PaymentService(settings, processor, notifier)


async def _won_item(session, settings, notifier):
    owner = await make_user(session, "owner")
    org = await make_org(session, owner)
    event = await make_event(session, org, owner)
    item = await make_item(session, event, title="Painting")
    winner = await make_user(session, "winner")
    await place_bid(session, item, winner, 120)
    await SettlementService(settings, notifier).process_event_completion(session, event.id)
    await session.refresh(item)
    return item, winner


async def _draft_event(session, **kwargs):
    owner = await make_user(session, "owner")
    org = await make_org(session, owner)
    event = await make_event(
        session,
        org,
        owner,
        status=EventStatus.DRAFT.value,
        start_offset=timedelta(days=1),
        end_offset=timedelta(days=2),
        **kwargs,
    )
    return event, owner


async def test_winner_intent_includes_platform_fee(session, settings, notifier, payments, processor):
    item, winner = await _won_item(session, settings, notifier)

    result = await payments.create_winner_payment_intent(session, item.id, winner.id)

    assert result.amount == Decimal("120.00")
    assert result.platform_fee == Decimal("6.00")
    assert result.item_total == Decimal("126.00")
    intent = processor.intents[result.payment_intent_id]
    assert intent.amount == 12600
    assert intent.metadata["type"] == "auction_win"
    assert intent.metadata["itemId"] == item.id
    assert intent.metadata["userId"] == winner.id
    assert intent.metadata["platformFee"] == "6.00"


async def test_only_winner_can_pay(session, settings, notifier, payments):
    item, _ = await _won_item(session, settings, notifier)
    stranger = await make_user(session, "stranger")

    with pytest.raises(NotFoundError):
        await payments.create_winner_payment_intent(session, item.id, stranger.id)


async def test_winner_webhook_marks_item_sold_once(session, settings, notifier, payments, processor):
    item, winner = await _won_item(session, settings, notifier)
    result = await payments.create_winner_payment_intent(session, item.id, winner.id)
    intent = processor.succeed(result.payment_intent_id)

    await payments.handle_winner_payment_webhook(session, intent)
    await payments.handle_winner_payment_webhook(session, intent)

    await session.refresh(item)
    assert item.status == ItemStatus.SOLD.value
    fee = await session.scalar(select(PlatformFee).where(PlatformFee.fee_type == FeeType.ITEM_SALE.value))
    assert fee.status == FeeStatus.PAID.value
    assert fee.stripe_payment_intent_id == intent.id

    confirmation = await payments.confirm_winner_payment(session, item.id, intent.id, winner.id)
    assert confirmation.success
    assert confirmation.message == "Payment already confirmed"

    with pytest.raises(StateConflictError):
        await payments.create_winner_payment_intent(session, item.id, winner.id)


async def test_confirm_winner_payment(session, settings, notifier, payments, processor):
    item, winner = await _won_item(session, settings, notifier)
    result = await payments.create_winner_payment_intent(session, item.id, winner.id)

    pending = await payments.confirm_winner_payment(session, item.id, result.payment_intent_id, winner.id)
    assert not pending.success
    assert pending.message == "Payment not completed. Status: requires_payment_method"

    processor.succeed(result.payment_intent_id)
    mismatch = await payments.confirm_winner_payment(session, "other-item", result.payment_intent_id, winner.id)
    assert mismatch.message == "Payment does not match this item"

    confirmed = await payments.confirm_winner_payment(session, item.id, result.payment_intent_id, winner.id)
    assert confirmed.success
    assert confirmed.message == "Payment confirmed"
    await session.refresh(item)
    assert item.status == ItemStatus.SOLD.value


async def test_winner_webhook_rejects_bad_metadata(session, payments, processor):
    intent = await processor.create_payment_intent(1000, {"type": "auction_win", "userId": "u1"})
    with pytest.raises(MetadataValidationError):
        await payments.handle_winner_payment_webhook(session, intent)

    intent = await processor.create_payment_intent(1000, {"type": "auction_win", "itemId": "missing", "userId": "u1"})
    with pytest.raises(MetadataValidationError):
        await payments.handle_winner_payment_webhook(session, intent)

    # Чужие платежи пропускаются
    intent = await processor.create_payment_intent(1000, {"type": "event_publish"})
    await payments.handle_winner_payment_webhook(session, intent)


async def test_publish_intent_uses_tier_fee(session, payments, processor):
    event, owner = await _draft_event(session, tier="medium")

    result = await payments.create_publish_payment_intent(session, event.id, owner.id)

    assert result.amount == Decimal("99")
    assert result.tier == "medium"
    intent = processor.intents[result.payment_intent_id]
    assert intent.amount == 9900
    assert intent.metadata["type"] == "event_publish"
    assert intent.metadata["eventId"] == event.id
    assert intent.metadata["organizationId"] == event.organization_id


async def test_publish_intent_checks(session, payments):
    event, _ = await _draft_event(session)
    stranger = await make_user(session, "stranger")

    with pytest.raises(PermissionDeniedError):
        await payments.create_publish_payment_intent(session, event.id, stranger.id)

    with pytest.raises(NotFoundError):
        await payments.create_publish_payment_intent(session, "missing", stranger.id)

    event.status = EventStatus.ACTIVE.value
    await session.commit()
    with pytest.raises(StateConflictError):
        await payments.create_publish_payment_intent(session, event.id, stranger.id)


async def test_org_admin_can_publish(session, payments):
    event, _ = await _draft_event(session)
    admin = await make_user(session, "admin")
    session.add(OrganizationMember(organization_id=event.organization_id, user_id=admin.id, role=MemberRole.ADMIN.value))
    await session.commit()

    result = await payments.create_publish_payment_intent(session, event.id, admin.id)
    assert result.amount == Decimal("49")


async def test_publish_webhook_then_confirm(session, payments, processor):
    event, owner = await _draft_event(session)
    result = await payments.create_publish_payment_intent(session, event.id, owner.id)
    intent = processor.succeed(result.payment_intent_id)

    await payments.handle_publish_payment_webhook(session, intent)
    confirmation = await payments.confirm_publish_payment(session, event.id, intent.id, owner.id)

    assert confirmation.success
    assert confirmation.message == "Event already published"
    await session.refresh(event)
    assert event.status == EventStatus.SCHEDULED.value

    fees = (await session.execute(select(PlatformFee))).scalars().all()
    assert len(fees) == 1
    assert fees[0].fee_type == FeeType.EVENT_SMALL.value
    assert fees[0].status == FeeStatus.PAID.value
    assert event.fee_id == fees[0].id


async def test_confirm_publish_payment(session, payments, processor):
    event, owner = await _draft_event(session)
    result = await payments.create_publish_payment_intent(session, event.id, owner.id)
    processor.succeed(result.payment_intent_id)

    mismatch = await payments.confirm_publish_payment(session, "other-event", result.payment_intent_id, owner.id)
    assert mismatch.message == "Payment does not match this event"

    confirmation = await payments.confirm_publish_payment(session, event.id, result.payment_intent_id, owner.id)
    assert confirmation.message == "Event published successfully"

    # Запоздавший вебхук не создает вторую комиссию
    await payments.handle_publish_payment_webhook(session, processor.intents[result.payment_intent_id])
    assert await session.scalar(select(func.count(PlatformFee.id))) == 1


async def _published_event(session, payments, processor):
    event, owner = await _draft_event(session)
    result = await payments.create_publish_payment_intent(session, event.id, owner.id)
    processor.succeed(result.payment_intent_id)
    await payments.confirm_publish_payment(session, event.id, result.payment_intent_id, owner.id)
    return event, owner, result.payment_intent_id


async def test_cancel_before_start_refunds_publish_fee(session, payments, processor):
    event, owner, intent_id = await _published_event(session, payments, processor)

    result = await payments.process_event_cancellation(session, event.id, owner.id)

    assert result.cancelled and result.refunded
    assert result.refund_amount == Decimal("49")
    assert result.message == "Event cancelled and $49.00 refunded to your payment method."
    assert processor.refunds == [intent_id]
    await session.refresh(event)
    assert event.status == EventStatus.CANCELLED.value
    fee = await session.get(PlatformFee, event.fee_id)
    assert fee.status == FeeStatus.REFUNDED.value
    assert fee.refund_reason == "Event cancelled before start"


async def test_cancel_keeps_cancellation_when_refund_fails(session, payments, processor):
    event, owner, _ = await _published_event(session, payments, processor)
    processor.fail_refunds = True

    result = await payments.process_event_cancellation(session, event.id, owner.id)

    assert result.cancelled and not result.refunded
    assert result.message == "Event cancelled but refund failed. Please contact support."
    await session.refresh(event)
    assert event.status == EventStatus.CANCELLED.value
    fee = await session.get(PlatformFee, event.fee_id)
    assert fee.status == FeeStatus.PAID.value


async def test_cancel_unpaid_draft(session, payments, processor):
    event, owner = await _draft_event(session)

    result = await payments.process_event_cancellation(session, event.id, owner.id)

    assert result.message == "Event cancelled successfully."
    assert processor.refunds == []


async def test_cancel_started_event_notifies_bidders(session, payments, processor, notifier):
    owner = await make_user(session, "owner")
    org = await make_org(session, owner)
    event = await make_event(session, org, owner, end_offset=timedelta(hours=3))
    painting = await make_item(session, event, title="Painting")
    vase = await make_item(session, event, title="Vase")
    alice, bob = await make_user(session, "alice"), await make_user(session, "bob")
    await place_bid(session, painting, alice, 50, minutes_ago=5)
    await place_bid(session, painting, alice, 60)
    await place_bid(session, vase, bob, 30, silent=True)

    result = await payments.process_event_cancellation(session, event.id, owner.id)

    assert result.cancelled and not result.refunded
    assert result.message.startswith("Event cancelled. All bids have been cancelled")
    assert processor.refunds == []

    cancelled = {(n.user_id, n.item_title) for n in notifier.sent if isinstance(n, BidCancelled)}
    assert cancelled == {(alice.id, "Painting"), (bob.id, "Vase")}
    assert len(notifier.sent) == 2

    await session.refresh(painting)
    await session.refresh(vase)
    assert painting.status == ItemStatus.CANCELLED.value
    assert vase.status == ItemStatus.CANCELLED.value


async def test_cancel_guards(session, payments):
    owner = await make_user(session, "owner")
    org = await make_org(session, owner)
    ended = await make_event(session, org, owner, status=EventStatus.ENDED.value)
    stranger = await make_user(session, "stranger")

    with pytest.raises(StateConflictError):
        await payments.process_event_cancellation(session, ended.id, owner.id)

    with pytest.raises(PermissionDeniedError):
        await payments.process_event_cancellation(session, ended.id, stranger.id)

    with pytest.raises(NotFoundError):
        await payments.process_event_cancellation(session, "missing", owner.id)
