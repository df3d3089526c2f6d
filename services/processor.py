"""Интеграция с платежным процессором"""
import asyncio
import logging
from typing import Dict, Optional, Protocol
import stripe
from config import Settings
from services.dto import ProcessorPaymentIntent, ProcessorRefund, ProcessorTransfer
from services.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    """Операции платежного процессора, нужные конвейеру расчетов"""

    async def create_payment_intent(
        self,
        amount_cents: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
    ) -> ProcessorPaymentIntent: ...

    async def retrieve_payment_intent(self, payment_intent_id: str) -> ProcessorPaymentIntent: ...

    async def create_refund(self, payment_intent_id: str) -> ProcessorRefund: ...

    async def create_transfer(
        self,
        amount_cents: int,
        destination: str,
        metadata: Dict[str, str],
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> ProcessorTransfer: ...


def _intent_from_stripe(intent) -> ProcessorPaymentIntent:
    return ProcessorPaymentIntent(
        id=intent.id,
        status=intent.status,
        client_secret=intent.client_secret,
        amount=intent.amount,
        metadata={key: str(value) for key, value in (intent.metadata or {}).items()},
    )


class StripeProcessor:
    """Stripe: платежи покупателей, возвраты и переводы организациям"""

    def __init__(self, settings: Settings):
        self._client = stripe.StripeClient(settings.STRIPE_SECRET_KEY)
        self._currency = settings.CURRENCY

    async def _call(self, action: str, method, *args, **kwargs):
        # Клиент Stripe синхронный, выносим вызов из event loop
        try:
            return await asyncio.to_thread(method, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Ошибка Stripe ({action}): {e}")
            raise ExternalServiceError(f"Stripe {action} failed: {e.user_message or e}") from e

    async def create_payment_intent(
        self,
        amount_cents: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
    ) -> ProcessorPaymentIntent:
        params = {
            "amount": amount_cents,
            "currency": self._currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        intent = await self._call("payment intent create", self._client.payment_intents.create, params=params)
        return _intent_from_stripe(intent)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> ProcessorPaymentIntent:
        intent = await self._call(
            "payment intent retrieve",
            self._client.payment_intents.retrieve,
            payment_intent_id,
        )
        return _intent_from_stripe(intent)

    async def create_refund(self, payment_intent_id: str) -> ProcessorRefund:
        refund = await self._call(
            "refund create",
            self._client.refunds.create,
            params={"payment_intent": payment_intent_id},
        )
        return ProcessorRefund(id=refund.id, status=refund.status)

    async def create_transfer(
        self,
        amount_cents: int,
        destination: str,
        metadata: Dict[str, str],
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> ProcessorTransfer:
        params = {
            "amount": amount_cents,
            "currency": self._currency,
            "destination": destination,
            "metadata": metadata,
        }
        if description:
            params["description"] = description
        transfer = await self._call(
            "transfer create",
            self._client.transfers.create,
            params=params,
            options={"idempotency_key": idempotency_key},
        )
        return ProcessorTransfer(id=transfer.id, amount=transfer.amount)
