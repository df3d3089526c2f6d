import itertools
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from database.models.bid import Bid, SilentBid
from database.models.event import AuctionEvent, AuctionType, EventStatus, EventTier
from database.models.item import EventItem, ItemStatus, SubmissionStatus
from database.models.organization import MemberRole, Organization, OrganizationMember, OrganizationType
from database.models.user import User
from services.clock import utcnow
from services.dto import ProcessorPaymentIntent, ProcessorRefund, ProcessorTransfer
from services.errors import ExternalServiceError


class FakeProcessor:
    """Процессор в памяти: запоминает платежи, переводы и возвраты"""

    def __init__(self):
        self.intents: Dict[str, ProcessorPaymentIntent] = {}
        self.transfers: List[dict] = []
        self.refunds: List[str] = []
        self.failing_destinations = set()
        self.fail_refunds = False

    async def create_payment_intent(self, amount_cents, metadata, customer_id=None):
        intent = ProcessorPaymentIntent(
            id=f"pi_{len(self.intents) + 1}",
            status="requires_payment_method",
            client_secret=f"secret_{len(self.intents) + 1}",
            amount=amount_cents,
            metadata=metadata,
        )
        self.intents[intent.id] = intent
        return intent

    def succeed(self, intent_id: str) -> ProcessorPaymentIntent:
        intent = self.intents[intent_id].model_copy(update={"status": "succeeded"})
        self.intents[intent_id] = intent
        return intent

    async def retrieve_payment_intent(self, payment_intent_id):
        return self.intents[payment_intent_id]

    async def create_refund(self, payment_intent_id):
        if self.fail_refunds:
            raise ExternalServiceError("Stripe refund create failed: charge already refunded")
        self.refunds.append(payment_intent_id)
        return ProcessorRefund(id=f"re_{len(self.refunds)}", status="succeeded")

    async def create_transfer(self, amount_cents, destination, metadata, idempotency_key, description=None):
        if destination in self.failing_destinations:
            raise ExternalServiceError("Stripe transfer create failed: account closed")
        self.transfers.append({
            "amount": amount_cents,
            "destination": destination,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        })
        return ProcessorTransfer(id=f"tr_{len(self.transfers)}", amount=amount_cents)


_emails = itertools.count(1)


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, notification):
        if self.fail:
            raise RuntimeError("telegram is down")
        self.sent.append(notification)


async def make_user(session, name: str = "user", **kwargs) -> User:
    user = User(email=f"{name}-{next(_emails)}@example.com", display_name=name, **kwargs)
    session.add(user)
    await session.commit()
    return user


async def make_org(session, owner: Optional[User] = None, payouts_enabled: bool = True, **kwargs) -> Organization:
    kwargs.setdefault("org_type", OrganizationType.CLUB.value)
    org = Organization(
        name=kwargs.pop("name", "Friends of the Library"),
        stripe_account_id="acct_org" if payouts_enabled else None,
        stripe_payouts_enabled=payouts_enabled,
        **kwargs,
    )
    session.add(org)
    await session.flush()
    if owner:
        session.add(OrganizationMember(organization_id=org.id, user_id=owner.id, role=MemberRole.OWNER.value))
    await session.commit()
    return org


async def make_event(
    session,
    org: Optional[Organization],
    owner: Optional[User] = None,
    status: str = EventStatus.ACTIVE.value,
    auction_type: str = AuctionType.STANDARD.value,
    tier: str = EventTier.SMALL.value,
    start_offset: timedelta = timedelta(days=-2),
    end_offset: timedelta = timedelta(minutes=-1),
    **kwargs
) -> AuctionEvent:
    now = utcnow()
    event = AuctionEvent(
        organization_id=org.id if org else None,
        owner_id=owner.id if owner else None,
        name=kwargs.pop("name", "Spring Gala"),
        auction_type=auction_type,
        tier=tier,
        status=status,
        start_time=now + start_offset,
        end_time=now + end_offset,
        **kwargs,
    )
    session.add(event)
    await session.commit()
    return event


async def make_item(session, event: AuctionEvent, title: str = "Lot", **kwargs) -> EventItem:
    kwargs.setdefault("status", ItemStatus.ACTIVE.value)
    kwargs.setdefault("submission_status", SubmissionStatus.APPROVED.value)
    item = EventItem(event_id=event.id, title=title, **kwargs)
    session.add(item)
    await session.commit()
    return item


async def place_bid(session, item: EventItem, bidder: User, amount, minutes_ago: int = 0, silent: bool = False):
    model = SilentBid if silent else Bid
    bid = model(
        item_id=item.id,
        bidder_id=bidder.id,
        amount=Decimal(str(amount)),
        created_at=utcnow() - timedelta(minutes=minutes_ago),
    )
    session.add(bid)
    await session.commit()
    return bid


async def make_ended_event(session, org: Organization, total_raised, won_items: int = 1, days_ago: int = 10, **kwargs):
    """Завершенное событие, готовое к созданию выплаты"""
    event = await make_event(
        session,
        org,
        status=EventStatus.ENDED.value,
        start_offset=timedelta(days=-days_ago - 1),
        end_offset=timedelta(days=-days_ago),
        total_raised=Decimal(str(total_raised)),
        **kwargs,
    )
    for number in range(won_items):
        await make_item(session, event, title=f"Lot {number + 1}", status=ItemStatus.WON.value)
    return event
