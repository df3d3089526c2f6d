"""Платежи победителей и оплата публикации событий"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from sqlalchemy import select, union, update
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.bid import Bid, SilentBid
from database.models.event import AuctionEvent, EventStatus
from database.models.item import EventItem, ItemStatus
from database.models.organization import MemberRole, OrganizationMember
from database.models.platform_fee import FeeStatus, FeeType, PlatformFee
from database.models.user import User
from services.clock import as_utc, utcnow
from services.dto import (
    CancellationResult, PaymentConfirmation, PaymentIntentResult,
    ProcessorPaymentIntent, PublishIntentResult
)
from services.errors import (
    ExternalServiceError, MetadataValidationError, NotFoundError,
    PermissionDeniedError, StateConflictError
)
from services.fees import calculate_platform_fee, get_tier_flat_fee, to_cents, to_money
from services.notifications import BidCancelled, NotificationPort, notify_safely
from services.processor import PaymentProcessor

logger = logging.getLogger(__name__)

AUCTION_WIN = "auction_win"
EVENT_PUBLISH = "event_publish"
SUCCEEDED = "succeeded"


def _same_id(left: Optional[str], right: str) -> bool:
    return bool(left) and left.lower() == right.lower()


class PaymentService:
    """
    Два независимых платежных сценария:
    оплата выигранного лота покупателем и оплата публикации события организатором.

    Каждый платеж подтверждается и вебхуком, и прямым вызовом с клиента,
    поэтому обе ветки идемпотентны.
    """

    def __init__(self, settings: Settings, processor: PaymentProcessor, notifier: NotificationPort):
        self._settings = settings
        self._processor = processor
        self._notifier = notifier

    async def _customer_id(self, session: AsyncSession, user_id: str) -> Optional[str]:
        return await session.scalar(select(User.stripe_customer_id).where(User.id == user_id))

    async def _can_manage_event(self, session: AsyncSession, event: AuctionEvent, user_id: str) -> bool:
        """Владелец события или администратор организации"""
        if event.owner_id == user_id:
            return True
        if not event.organization_id:
            return False
        role = await session.scalar(
            select(OrganizationMember.role).where(
                OrganizationMember.organization_id == event.organization_id,
                OrganizationMember.user_id == user_id,
                OrganizationMember.role.in_((MemberRole.OWNER.value, MemberRole.ADMIN.value)),
            )
        )
        return role is not None

    # Оплата выигранного лота

    async def create_winner_payment_intent(
        self,
        session: AsyncSession,
        item_id: str,
        user_id: str
    ) -> PaymentIntentResult:
        """Создать платеж на сумму ставки плюс комиссия"""
        result = await session.execute(
            select(EventItem).where(EventItem.id == item_id, EventItem.winner_id == user_id)
        )
        item = result.scalar_one_or_none()

        if not item:
            raise NotFoundError("Item not found or you are not the winner")

        if item.status != ItemStatus.WON.value:
            raise StateConflictError("This item has not been won or is already paid")

        winning_amount = to_money(item.current_bid)
        platform_fee = calculate_platform_fee(winning_amount, self._settings)
        total = winning_amount + platform_fee

        intent = await self._processor.create_payment_intent(
            to_cents(total),
            metadata={
                "type": AUCTION_WIN,
                "itemId": item.id,
                "eventId": item.event_id,
                "userId": user_id,
                "winningAmount": str(winning_amount),
                "platformFee": str(platform_fee),
            },
            customer_id=await self._customer_id(session, user_id),
        )
        logger.info(f"Создан платеж {intent.id} за лот {item.id} на {total}")

        return PaymentIntentResult(
            client_secret=intent.client_secret or "",
            payment_intent_id=intent.id,
            amount=winning_amount,
            platform_fee=platform_fee,
            item_total=total,
        )

    async def handle_winner_payment_webhook(
        self,
        session: AsyncSession,
        payment_intent: ProcessorPaymentIntent
    ) -> None:
        """Успешная оплата лота по вебхуку"""
        metadata = payment_intent.metadata
        if metadata.get("type") != AUCTION_WIN:
            return

        item_id = metadata.get("itemId")
        if not item_id or not metadata.get("userId"):
            raise MetadataValidationError(f"Missing metadata in payment intent {payment_intent.id}")

        item = await session.get(EventItem, item_id)
        if not item:
            raise MetadataValidationError(f"Unknown item {item_id} in payment intent {payment_intent.id}")

        await self._apply_winner_payment(session, item, payment_intent)

    async def confirm_winner_payment(
        self,
        session: AsyncSession,
        item_id: str,
        payment_intent_id: str,
        user_id: str
    ) -> PaymentConfirmation:
        """Подтвердить оплату лота с клиента (альтернатива вебхуку)"""
        payment_intent = await self._processor.retrieve_payment_intent(payment_intent_id)

        if payment_intent.status != SUCCEEDED:
            return PaymentConfirmation(
                success=False,
                message=f"Payment not completed. Status: {payment_intent.status}",
            )

        metadata = payment_intent.metadata
        if (
            metadata.get("type") != AUCTION_WIN
            or not _same_id(metadata.get("itemId"), item_id)
            or not _same_id(metadata.get("userId"), user_id)
        ):
            return PaymentConfirmation(success=False, message="Payment does not match this item")

        item = await session.get(EventItem, item_id)
        if not item:
            return PaymentConfirmation(success=False, message="Item not found")

        if item.status == ItemStatus.SOLD.value:
            return PaymentConfirmation(success=True, message="Payment already confirmed")

        await self._apply_winner_payment(session, item, payment_intent)
        return PaymentConfirmation(success=True, message="Payment confirmed")

    async def _apply_winner_payment(
        self,
        session: AsyncSession,
        item: EventItem,
        payment_intent: ProcessorPaymentIntent
    ) -> None:
        already_linked = await session.scalar(
            select(PlatformFee.id).where(PlatformFee.stripe_payment_intent_id == payment_intent.id)
        )
        if already_linked:
            logger.info(f"Платеж {payment_intent.id} уже учтен")
            return

        fee_amount = self._fee_from_metadata(payment_intent, item)

        item.status = ItemStatus.SOLD.value

        result = await session.execute(
            select(PlatformFee)
            .where(
                PlatformFee.event_id == item.event_id,
                PlatformFee.fee_type == FeeType.ITEM_SALE.value,
                PlatformFee.status == FeeStatus.PENDING.value,
                PlatformFee.amount == fee_amount,
            )
            .order_by(PlatformFee.created_at, PlatformFee.id)
            .limit(1)
        )
        fee = result.scalar_one_or_none()
        if fee:
            fee.status = FeeStatus.PAID.value
            fee.stripe_payment_intent_id = payment_intent.id
        else:
            logger.warning(f"Не найдена ожидающая комиссия {fee_amount} для лота {item.id}")

        await session.commit()
        logger.info(f"Лот {item.id} оплачен, платеж {payment_intent.id}")

    def _fee_from_metadata(self, payment_intent: ProcessorPaymentIntent, item: EventItem) -> Decimal:
        raw_fee = payment_intent.metadata.get("platformFee")
        if raw_fee is None:
            return calculate_platform_fee(item.current_bid or Decimal("0"), self._settings)
        try:
            return to_money(Decimal(raw_fee))
        except InvalidOperation as e:
            raise MetadataValidationError(f"Invalid platformFee in payment intent {payment_intent.id}") from e

    # Оплата публикации события

    async def create_publish_payment_intent(
        self,
        session: AsyncSession,
        event_id: str,
        user_id: str
    ) -> PublishIntentResult:
        """Создать платеж за публикацию по тарифу события"""
        event = await session.get(AuctionEvent, event_id)
        if not event:
            raise NotFoundError("Event not found")

        if event.status != EventStatus.DRAFT.value:
            raise StateConflictError("Only draft events can be published")

        if not await self._can_manage_event(session, event, user_id):
            raise PermissionDeniedError("You do not have permission to publish this event")

        flat_fee = get_tier_flat_fee(event.tier, self._settings)

        intent = await self._processor.create_payment_intent(
            to_cents(flat_fee),
            metadata={
                "type": EVENT_PUBLISH,
                "eventId": event.id,
                "userId": user_id,
                "tier": event.tier,
                "eventName": event.name,
                "organizationId": event.organization_id or "",
            },
            customer_id=await self._customer_id(session, user_id),
        )
        logger.info(f"Создан платеж {intent.id} за публикацию события {event.id} ({event.tier})")

        return PublishIntentResult(
            client_secret=intent.client_secret or "",
            payment_intent_id=intent.id,
            amount=flat_fee,
            tier=event.tier,
            event_name=event.name,
        )

    async def handle_publish_payment_webhook(
        self,
        session: AsyncSession,
        payment_intent: ProcessorPaymentIntent
    ) -> None:
        """Успешная оплата публикации по вебхуку"""
        metadata = payment_intent.metadata
        if metadata.get("type") != EVENT_PUBLISH:
            return

        event_id = metadata.get("eventId")
        if not event_id or not metadata.get("userId") or not metadata.get("tier"):
            raise MetadataValidationError(f"Missing metadata in publish payment intent {payment_intent.id}")

        event = await session.get(AuctionEvent, event_id)
        if not event:
            raise MetadataValidationError(f"Unknown event {event_id} in payment intent {payment_intent.id}")

        await self._apply_publish_payment(session, event, payment_intent)

    async def confirm_publish_payment(
        self,
        session: AsyncSession,
        event_id: str,
        payment_intent_id: str,
        user_id: str
    ) -> PaymentConfirmation:
        """Подтвердить оплату публикации с клиента (альтернатива вебхуку)"""
        payment_intent = await self._processor.retrieve_payment_intent(payment_intent_id)

        if payment_intent.status != SUCCEEDED:
            return PaymentConfirmation(
                success=False,
                message=f"Payment not completed. Status: {payment_intent.status}",
            )

        metadata = payment_intent.metadata
        if metadata.get("type") != EVENT_PUBLISH or not _same_id(metadata.get("eventId"), event_id):
            return PaymentConfirmation(success=False, message="Payment does not match this event")

        event = await session.get(AuctionEvent, event_id)
        if not event:
            return PaymentConfirmation(success=False, message="Event not found")

        if event.status == EventStatus.SCHEDULED.value and event.fee_id:
            return PaymentConfirmation(success=True, message="Event already published")

        await self._apply_publish_payment(session, event, payment_intent)
        logger.info(f"Публикация события {event_id} подтверждена пользователем {user_id}")
        return PaymentConfirmation(success=True, message="Event published successfully")

    async def _apply_publish_payment(
        self,
        session: AsyncSession,
        event: AuctionEvent,
        payment_intent: ProcessorPaymentIntent
    ) -> None:
        if event.status == EventStatus.SCHEDULED.value and event.fee_id:
            logger.info(f"Событие {event.id} уже опубликовано")
            return

        fee_id = await session.scalar(
            select(PlatformFee.id).where(PlatformFee.stripe_payment_intent_id == payment_intent.id)
        )

        if not fee_id:
            metadata = payment_intent.metadata
            tier = metadata.get("tier") or event.tier
            try:
                fee_type = FeeType.for_tier(tier)
                amount = get_tier_flat_fee(tier, self._settings)
            except ValueError as e:
                raise MetadataValidationError(f"Unknown tier '{tier}' in payment intent {payment_intent.id}") from e

            fee = PlatformFee(
                user_id=metadata.get("userId"),
                organization_id=metadata.get("organizationId") or event.organization_id,
                event_id=event.id,
                fee_type=fee_type.value,
                amount=amount,
                status=FeeStatus.PAID.value,
                stripe_payment_intent_id=payment_intent.id,
            )
            session.add(fee)
            await session.flush()
            fee_id = fee.id
            logger.info(f"Комиссия {fee_id} за публикацию события {event.id} оплачена")

        if event.status == EventStatus.DRAFT.value:
            event.status = EventStatus.SCHEDULED.value
            event.fee_id = fee_id
            logger.info(f"Событие {event.id} опубликовано, платеж {payment_intent.id}")
        else:
            logger.warning(f"Оплата публикации события {event.id} в статусе {event.status}, статус не меняем")

        await session.commit()

    # Отмена события

    async def process_event_cancellation(
        self,
        session: AsyncSession,
        event_id: str,
        user_id: str
    ) -> CancellationResult:
        """
        Отменить событие.

        После начала торгов ставки аннулируются, возврата нет.
        До начала оплаченная публикация возвращается; ошибка возврата
        не мешает отмене.
        """
        event = await session.get(AuctionEvent, event_id)
        if not event:
            raise NotFoundError("Event not found")

        if not await self._can_manage_event(session, event, user_id):
            raise PermissionDeniedError("You do not have permission to cancel this event")

        if event.status in (EventStatus.ENDED.value, EventStatus.CANCELLED.value):
            raise StateConflictError(f"Event cannot be cancelled from status '{event.status}'")

        has_started = utcnow() >= as_utc(event.start_time) or event.status == EventStatus.ACTIVE.value

        event.status = EventStatus.CANCELLED.value

        if has_started:
            return await self._cancel_started_event(session, event)

        fee = await session.get(PlatformFee, event.fee_id) if event.fee_id else None
        await session.commit()
        logger.info(f"Событие {event.id} отменено до начала торгов")

        if not fee or fee.status != FeeStatus.PAID.value or not fee.stripe_payment_intent_id:
            return CancellationResult(
                cancelled=True,
                refunded=False,
                message="Event cancelled successfully.",
            )

        try:
            await self._processor.create_refund(fee.stripe_payment_intent_id)
        except ExternalServiceError as e:
            logger.error(f"Возврат за публикацию события {event.id} не выполнен: {e}")
            return CancellationResult(
                cancelled=True,
                refunded=False,
                message="Event cancelled but refund failed. Please contact support.",
            )

        fee.status = FeeStatus.REFUNDED.value
        fee.refunded_at = utcnow()
        fee.refund_reason = "Event cancelled before start"
        await session.commit()
        logger.info(f"Комиссия {fee.id} возвращена ({fee.amount})")

        return CancellationResult(
            cancelled=True,
            refunded=True,
            refund_amount=fee.amount,
            message=f"Event cancelled and ${fee.amount:.2f} refunded to your payment method.",
        )

    async def _cancel_started_event(self, session: AsyncSession, event: AuctionEvent) -> CancellationResult:
        item_ids = select(EventItem.id).where(EventItem.event_id == event.id)
        bidders = union(
            select(Bid.item_id, Bid.bidder_id).where(Bid.item_id.in_(item_ids)),
            select(SilentBid.item_id, SilentBid.bidder_id).where(SilentBid.item_id.in_(item_ids)),
        ).subquery()
        result = await session.execute(
            select(bidders.c.item_id, bidders.c.bidder_id, EventItem.title)
            .join(EventItem, EventItem.id == bidders.c.item_id)
            .order_by(bidders.c.item_id, bidders.c.bidder_id)
        )
        cancelled_bids = [
            BidCancelled(user_id=row.bidder_id, item_title=row.title, event_id=event.id, item_id=row.item_id)
            for row in result.all()
        ]

        await session.execute(
            update(EventItem)
            .where(EventItem.event_id == event.id)
            .values(status=ItemStatus.CANCELLED.value)
        )
        await session.commit()
        logger.info(f"Событие {event.id} отменено во время торгов, ставок аннулировано: {len(cancelled_bids)}")

        for notification in cancelled_bids:
            await notify_safely(self._notifier, notification)

        return CancellationResult(
            cancelled=True,
            refunded=False,
            message=(
                "Event cancelled. All bids have been cancelled and bidders notified. "
                "No refund issued as auction had already started."
            ),
        )
