"""Обработка вебхуков платежного процессора"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict
import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.chargeback import ChargebackStatus
from database.models.platform_fee import PlatformFee
from services.chargebacks import ChargebackService
from services.dto import ProcessorPaymentIntent
from services.errors import MetadataValidationError
from services.fees import HUNDRED, to_money
from services.payments import PaymentService
from services.payouts import PayoutService

logger = logging.getLogger(__name__)


class WebhookHandler:
    """Проверка подписи и маршрутизация событий процессора"""

    def __init__(
        self,
        settings: Settings,
        payments: PaymentService,
        chargebacks: ChargebackService,
        payouts: PayoutService
    ):
        self._settings = settings
        self._payments = payments
        self._chargebacks = chargebacks
        self._payouts = payouts

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Проверить подпись вебхука и вернуть событие"""
        try:
            stripe.Webhook.construct_event(payload, signature, self._settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Отклонен вебхук с неверной подписью: {e}")
            raise MetadataValidationError("Invalid webhook signature") from e
        return json.loads(payload)

    async def dispatch(self, session: AsyncSession, event: Dict[str, Any]) -> bool:
        """
        Обработать событие процессора.

        Возвращает False для неизвестных типов и некорректных данных.
        Вебхук всегда подтверждается, поэтому ошибки метаданных только логируются.
        """
        event_type = event.get("type")
        data = (event.get("data") or {}).get("object") or {}

        try:
            if event_type == "payment_intent.succeeded":
                await self._payment_succeeded(session, data)
            elif event_type == "charge.dispute.created":
                await self._dispute_created(session, data)
            elif event_type == "charge.dispute.closed":
                await self._dispute_closed(session, data)
            elif event_type == "transfer.reversed":
                await self._payouts.mark_transfer_failed(session, data["id"])
            else:
                logger.debug(f"Вебхук {event_type} не обрабатывается")
                return False
        except MetadataValidationError as e:
            logger.error(f"Некорректный вебхук {event_type}: {e}")
            return False
        except KeyError as e:
            logger.error(f"В вебхуке {event_type} нет поля {e}")
            return False

        return True

    async def _payment_succeeded(self, session: AsyncSession, data: Dict[str, Any]) -> None:
        payment_intent = ProcessorPaymentIntent(
            id=data["id"],
            status=data.get("status") or "succeeded",
            amount=data.get("amount"),
            metadata={key: str(value) for key, value in (data.get("metadata") or {}).items()},
        )
        await self._payments.handle_winner_payment_webhook(session, payment_intent)
        await self._payments.handle_publish_payment_webhook(session, payment_intent)

    async def _dispute_created(self, session: AsyncSession, data: Dict[str, Any]) -> None:
        payment_intent_id = data.get("payment_intent")
        if not payment_intent_id:
            raise MetadataValidationError(f"Dispute {data['id']} has no payment intent")

        # Организацию и событие берем из комиссии, оплаченной этим платежом
        result = await session.execute(
            select(PlatformFee.organization_id, PlatformFee.event_id)
            .where(PlatformFee.stripe_payment_intent_id == payment_intent_id)
            .limit(1)
        )
        row = result.first()
        if not row or not row.organization_id:
            raise MetadataValidationError(f"No organization for disputed payment {payment_intent_id}")

        await self._chargebacks.record_chargeback(
            session,
            dispute_id=data["id"],
            payment_intent_id=payment_intent_id,
            organization_id=row.organization_id,
            event_id=row.event_id,
            amount=to_money(Decimal(data["amount"]) / HUNDRED),
            reason=data.get("reason"),
        )

    async def _dispute_closed(self, session: AsyncSession, data: Dict[str, Any]) -> None:
        status = data.get("status")
        if status not in (ChargebackStatus.WON.value, ChargebackStatus.LOST.value):
            status = ChargebackStatus.CLOSED.value
        await self._chargebacks.update_chargeback_status(session, data["id"], status)
