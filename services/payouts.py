"""Выплаты организациям по завершенным событиям"""
import json
import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.compliance import TaxInfoStatus
from database.models.event import AuctionEvent, EventStatus
from database.models.item import EventItem, ItemStatus
from database.models.organization import Organization
from database.models.payout import OrganizationPayout, PayoutReserve, PayoutStatus, ReserveStatus
from database.models.trust import TrustLevel
from services.clock import utcnow
from services.compliance import ComplianceGateway
from services.dto import PayoutRunResult, PayoutSummary
from services.errors import NotFoundError, StateConflictError
from services.fees import calculate_payout_amounts, to_cents
from services.fraud import FraudScorer
from services.processor import PaymentProcessor
from services.trust import TrustManager

logger = logging.getLogger(__name__)

EXCEEDS_AUTO_LIMIT = "exceeds_auto_limit"
W9_REQUIRED = "w9_required"


def _summary(payout: OrganizationPayout, event_name: str, organization_name: str) -> PayoutSummary:
    return PayoutSummary(
        id=payout.id,
        event_id=payout.event_id,
        event_name=event_name,
        organization_id=payout.organization_id,
        organization_name=organization_name,
        gross_amount=payout.gross_amount,
        stripe_fees=payout.stripe_fees,
        platform_fee=payout.platform_fee,
        reserve_amount=payout.reserve_amount,
        net_payout=payout.net_payout,
        status=payout.status,
        eligible_at=payout.eligible_at,
        flags=payout.flag_list,
        requires_review=payout.requires_review,
    )


class PayoutService:
    """
    Расчет и исполнение выплат.

    Выплата создается одна на событие, выполняется после периода удержания
    и только в пределах лимита доверия организации.
    """

    def __init__(
        self,
        settings: Settings,
        processor: PaymentProcessor,
        fraud: FraudScorer,
        trust: TrustManager,
        compliance: ComplianceGateway
    ):
        self._settings = settings
        self._processor = processor
        self._fraud = fraud
        self._trust = trust
        self._compliance = compliance

    async def create_payout_record(self, session: AsyncSession, event_id: str) -> str:
        """Создать запись о выплате по завершенному событию (идемпотентно)"""
        event = await session.get(AuctionEvent, event_id)
        if not event:
            raise NotFoundError("Event not found")

        if event.status != EventStatus.ENDED.value:
            raise StateConflictError("Event must be ended to create payout")

        existing_id = await self._existing_payout_id(session, event_id)
        if existing_id:
            return existing_id

        item_count = await session.scalar(
            select(func.count(EventItem.id)).where(
                EventItem.event_id == event_id,
                EventItem.status.in_((ItemStatus.WON.value, ItemStatus.SOLD.value)),
            )
        ) or 0

        amounts = calculate_payout_amounts(event.total_raised or Decimal("0"), item_count, self._settings)
        eligible_at = event.end_time + timedelta(days=self._settings.HOLD_PERIOD_DAYS)
        assessment = await self._fraud.assess(session, event_id, event.organization_id)
        status = PayoutStatus.HELD.value if assessment.requires_review else PayoutStatus.PENDING.value

        payout = OrganizationPayout(
            organization_id=event.organization_id,
            event_id=event_id,
            gross_amount=amounts.gross_amount,
            stripe_fees=amounts.stripe_fees,
            platform_fee=amounts.platform_fee,
            reserve_amount=amounts.reserve_amount,
            net_payout=amounts.net_payout,
            status=status,
            flags=json.dumps(assessment.flags),
            requires_review=assessment.requires_review,
            eligible_at=eligible_at,
        )
        session.add(payout)

        event.payout_status = status
        event.payout_eligible_at = eligible_at
        event.payout_amount = amounts.net_payout
        event.payout_held_reason = "Flagged for review" if assessment.requires_review else None

        try:
            await session.commit()
        except IntegrityError:
            # Параллельный вызов уже создал выплату
            await session.rollback()
            existing_id = await self._existing_payout_id(session, event_id)
            if not existing_id:
                raise
            return existing_id

        logger.info(
            f"Создана выплата {payout.id} по событию {event_id}: "
            f"к выплате {amounts.net_payout}, статус {status}"
        )
        return payout.id

    async def _existing_payout_id(self, session: AsyncSession, event_id: str) -> Optional[str]:
        return await session.scalar(
            select(OrganizationPayout.id).where(OrganizationPayout.event_id == event_id)
        )

    async def process_eligible_payouts(self, session: AsyncSession) -> PayoutRunResult:
        """Выполнить все выплаты, у которых истек период удержания"""
        result = PayoutRunResult()

        ids_result = await session.execute(
            select(OrganizationPayout.id)
            .where(
                OrganizationPayout.status == PayoutStatus.PENDING.value,
                OrganizationPayout.eligible_at <= utcnow(),
                OrganizationPayout.requires_review.is_(False),
            )
            .order_by(OrganizationPayout.eligible_at)
        )
        payout_ids = list(ids_result.scalars().all())

        for payout_id in payout_ids:
            try:
                await self._process_payout(session, payout_id, result)
            except Exception as e:
                logger.error(f"Ошибка выплаты {payout_id}: {e}")
                await session.rollback()
                result.errors.append(f"Payout {payout_id}: {e}")
                await self._mark_failed(session, payout_id, str(e))

        logger.info(
            f"Обработка выплат: выполнено {result.processed}, удержано {result.held}, "
            f"ошибок {len(result.errors)}"
        )
        return result

    async def _process_payout(self, session: AsyncSession, payout_id: str, result: PayoutRunResult) -> None:
        payout = await session.get(OrganizationPayout, payout_id)
        organization = await session.get(Organization, payout.organization_id)
        event = await session.get(AuctionEvent, payout.event_id)

        trust = await self._trust.get_organization_trust(session, payout.organization_id)
        # Одобрение администратора снимает лимит, но не для организации с проигранным спором
        approved = payout.reviewed_at is not None and trust.trust_level != TrustLevel.FLAGGED.value
        if not approved and payout.net_payout > trust.auto_payout_limit:
            await self._hold(session, payout, event, EXCEEDS_AUTO_LIMIT, "Exceeds auto-payout limit")
            result.held += 1
            return

        if payout.net_payout >= self._settings.TAX_FORM_THRESHOLD:
            tax_info = await self._compliance.get_organization_tax_info(session, payout.organization_id)
            if not tax_info or tax_info.status != TaxInfoStatus.VERIFIED.value:
                await self._compliance.log_compliance_event(
                    session,
                    "payout_blocked_w9_required",
                    organization_id=payout.organization_id,
                    details={
                        "payoutId": payout.id,
                        "eventId": payout.event_id,
                        "amount": payout.net_payout,
                        "taxInfoStatus": tax_info.status if tax_info else "not_submitted",
                    },
                )
                await self._hold(session, payout, event, W9_REQUIRED, "W-9 required")
                result.held += 1
                return

        if payout.net_payout > 0 and not organization.can_receive_payouts:
            logger.warning(f"Организация {organization.id} не подключила выплаты, выплата {payout.id} ждет")
            result.errors.append(
                f"Payout {payout.id}: Organization {organization.id} not set up for payouts"
            )
            return

        now = utcnow()
        payout.status = PayoutStatus.PROCESSING.value
        payout.processed_at = now
        await session.commit()

        if payout.net_payout > 0:
            transfer = await self._processor.create_transfer(
                to_cents(payout.net_payout),
                organization.stripe_account_id,
                metadata={
                    "payoutId": payout.id,
                    "eventId": payout.event_id,
                    "organizationId": organization.id,
                },
                idempotency_key=f"payout-{payout.id}",
                description=f"Payout for {event.name}",
            )
            payout.stripe_transfer_id = transfer.id

        completed_at = utcnow()
        payout.status = PayoutStatus.COMPLETED.value
        payout.completed_at = completed_at
        event.payout_status = PayoutStatus.COMPLETED.value
        event.payout_transferred_at = completed_at
        event.payout_held_reason = None

        if payout.reserve_amount > 0:
            session.add(PayoutReserve(
                payout_id=payout.id,
                organization_id=payout.organization_id,
                amount=payout.reserve_amount,
                release_at=completed_at + timedelta(days=self._settings.RESERVE_HOLD_DAYS),
                status=ReserveStatus.HELD.value,
            ))
        await session.commit()
        result.processed += 1
        logger.info(f"Выплата {payout.id} выполнена: {payout.net_payout} -> {organization.stripe_account_id}")

        await self._trust.update_trust_level(session, payout.organization_id)

    async def _hold(
        self,
        session: AsyncSession,
        payout: OrganizationPayout,
        event: AuctionEvent,
        flag: str,
        reason: str
    ) -> None:
        payout.status = PayoutStatus.HELD.value
        payout.requires_review = True
        payout.add_flag(flag)
        event.payout_status = PayoutStatus.HELD.value
        event.payout_held_reason = reason
        await session.commit()
        logger.info(f"Выплата {payout.id} удержана: {flag}")

    async def _mark_failed(self, session: AsyncSession, payout_id: str, reason: str) -> None:
        try:
            payout = await session.get(OrganizationPayout, payout_id)
            # Завершенную выплату не откатываем из-за ошибок после перевода
            if not payout or payout.status == PayoutStatus.COMPLETED.value:
                return
            payout.status = PayoutStatus.FAILED.value
            payout.failure_reason = reason
            event = await session.get(AuctionEvent, payout.event_id)
            if event:
                event.payout_status = PayoutStatus.FAILED.value
            await session.commit()
        except Exception as e:
            logger.error(f"Не удалось отметить выплату {payout_id} как failed: {e}")
            await session.rollback()

    async def approve_payout(
        self,
        session: AsyncSession,
        payout_id: str,
        reviewed_by: str,
        notes: Optional[str] = None
    ) -> bool:
        """Вернуть удержанную выплату в очередь. False, если выплата не в статусе held."""
        payout = await session.get(OrganizationPayout, payout_id)
        if not payout:
            raise NotFoundError("Payout not found")

        if payout.status != PayoutStatus.HELD.value:
            logger.info(f"Выплата {payout_id} не удержана ({payout.status}), одобрение пропущено")
            return False

        payout.status = PayoutStatus.PENDING.value
        payout.requires_review = False
        payout.reviewed_by = reviewed_by
        payout.reviewed_at = utcnow()
        payout.review_notes = notes

        event = await session.get(AuctionEvent, payout.event_id)
        if event:
            event.payout_status = PayoutStatus.PENDING.value
            event.payout_held_reason = None

        await session.commit()
        logger.info(f"Выплата {payout_id} одобрена пользователем {reviewed_by}")
        return True

    async def reject_payout(
        self,
        session: AsyncSession,
        payout_id: str,
        reviewed_by: str,
        reason: str
    ) -> None:
        """Отклонить выплату"""
        payout = await session.get(OrganizationPayout, payout_id)
        if not payout:
            raise NotFoundError("Payout not found")

        payout.status = PayoutStatus.FAILED.value
        payout.requires_review = False
        payout.reviewed_by = reviewed_by
        payout.reviewed_at = utcnow()
        payout.review_notes = reason
        payout.failure_reason = reason

        event = await session.get(AuctionEvent, payout.event_id)
        if event:
            event.payout_status = PayoutStatus.FAILED.value
            event.payout_held_reason = reason

        await session.commit()
        logger.info(f"Выплата {payout_id} отклонена пользователем {reviewed_by}: {reason}")

    async def mark_transfer_failed(self, session: AsyncSession, transfer_id: str) -> Optional[str]:
        """Перевод отозван процессором"""
        result = await session.execute(
            select(OrganizationPayout).where(OrganizationPayout.stripe_transfer_id == transfer_id)
        )
        payout = result.scalar_one_or_none()
        if not payout:
            logger.warning(f"Выплата для перевода {transfer_id} не найдена")
            return None

        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = f"Transfer {transfer_id} reversed"
        event = await session.get(AuctionEvent, payout.event_id)
        if event:
            event.payout_status = PayoutStatus.FAILED.value

        await session.commit()
        logger.warning(f"Перевод {transfer_id} отозван, выплата {payout.id} -> failed")
        return payout.id

    def _summary_query(self):
        return (
            select(OrganizationPayout, AuctionEvent.name, Organization.name)
            .join(AuctionEvent, AuctionEvent.id == OrganizationPayout.event_id)
            .join(Organization, Organization.id == OrganizationPayout.organization_id)
        )

    async def get_payout_details(self, session: AsyncSession, payout_id: str) -> Optional[PayoutSummary]:
        result = await session.execute(
            self._summary_query().where(OrganizationPayout.id == payout_id)
        )
        row = result.first()
        if not row:
            return None
        return _summary(*row)

    async def get_organization_payouts(self, session: AsyncSession, organization_id: str) -> List[PayoutSummary]:
        """Выплаты организации, новые первыми"""
        result = await session.execute(
            self._summary_query()
            .where(OrganizationPayout.organization_id == organization_id)
            .order_by(OrganizationPayout.created_at.desc())
        )
        return [_summary(*row) for row in result.all()]

    async def get_payouts_requiring_review(self, session: AsyncSession) -> List[PayoutSummary]:
        """Удержанные выплаты, ожидающие проверки, старые первыми"""
        result = await session.execute(
            self._summary_query()
            .where(
                OrganizationPayout.requires_review.is_(True),
                OrganizationPayout.status == PayoutStatus.HELD.value,
            )
            .order_by(OrganizationPayout.created_at.asc())
        )
        return [_summary(*row) for row in result.all()]
