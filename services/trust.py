"""Уровень доверия организаций"""
import logging
from decimal import Decimal
from typing import Tuple
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from config import Settings
from database.models.chargeback import Chargeback, ChargebackStatus
from database.models.organization import Organization, OrganizationType
from database.models.payout import OrganizationPayout, PayoutStatus
from database.models.trust import OrganizationTrust, TrustLevel
from services.dto import TrustInfo

logger = logging.getLogger(__name__)


def determine_trust_level(
    successful_payouts: int,
    lost_chargebacks: int,
    is_nonprofit: bool,
    settings: Settings
) -> Tuple[str, Decimal]:
    """Уровень доверия и лимит автовыплаты. Чарджбэк перекрывает всё остальное."""
    if lost_chargebacks > 0:
        level = TrustLevel.FLAGGED
    elif is_nonprofit and successful_payouts >= 2:
        level = TrustLevel.VERIFIED_NP
    elif successful_payouts >= 5:
        level = TrustLevel.TRUSTED
    elif successful_payouts >= 2:
        level = TrustLevel.ESTABLISHED
    else:
        level = TrustLevel.NEW
    return level.value, settings.AUTO_PAYOUT_LIMITS[level.value]


class TrustManager:
    """Ведет уровень доверия и лимит автовыплат организации"""

    def __init__(self, settings: Settings):
        self._settings = settings

    async def _get_or_create(self, session: AsyncSession, organization_id: str) -> OrganizationTrust:
        result = await session.execute(
            select(OrganizationTrust).where(OrganizationTrust.organization_id == organization_id)
        )
        trust = result.scalar_one_or_none()

        if not trust:
            trust = OrganizationTrust(
                organization_id=organization_id,
                trust_level=TrustLevel.NEW.value,
                auto_payout_limit=self._settings.AUTO_PAYOUT_LIMITS[TrustLevel.NEW.value],
                successful_events=0,
                total_payouts=Decimal("0"),
                chargeback_count=0,
                chargeback_amount=Decimal("0"),
            )
            session.add(trust)
            await session.flush()
            logger.info(f"Создан уровень доверия 'new' для организации {organization_id}")
        return trust

    async def get_organization_trust(self, session: AsyncSession, organization_id: str) -> TrustInfo:
        """Получить уровень доверия (создается при первом обращении)"""
        trust = await self._get_or_create(session, organization_id)
        await session.commit()
        return TrustInfo(
            trust_level=trust.trust_level,
            auto_payout_limit=trust.auto_payout_limit,
            successful_events=trust.successful_events or 0,
            total_payouts=trust.total_payouts or Decimal("0"),
            chargeback_count=trust.chargeback_count or 0,
        )

    async def update_trust_level(self, session: AsyncSession, organization_id: str) -> str:
        """Пересчитать уровень доверия по истории выплат и чарджбэков"""
        successful_payouts = await session.scalar(
            select(func.count(OrganizationPayout.id)).where(
                OrganizationPayout.organization_id == organization_id,
                OrganizationPayout.status == PayoutStatus.COMPLETED.value,
            )
        ) or 0
        total_paid = await session.scalar(
            select(func.sum(OrganizationPayout.net_payout)).where(
                OrganizationPayout.organization_id == organization_id,
                OrganizationPayout.status == PayoutStatus.COMPLETED.value,
            )
        ) or Decimal("0")
        lost_count = await session.scalar(
            select(func.count(Chargeback.id)).where(
                Chargeback.organization_id == organization_id,
                Chargeback.status == ChargebackStatus.LOST.value,
            )
        ) or 0
        lost_amount = await session.scalar(
            select(func.sum(Chargeback.amount)).where(
                Chargeback.organization_id == organization_id,
                Chargeback.status == ChargebackStatus.LOST.value,
            )
        ) or Decimal("0")
        org_type = await session.scalar(
            select(Organization.org_type).where(Organization.id == organization_id)
        )

        level, limit = determine_trust_level(
            successful_payouts,
            lost_count,
            org_type == OrganizationType.NONPROFIT.value,
            self._settings,
        )

        trust = await self._get_or_create(session, organization_id)
        previous = trust.trust_level
        trust.trust_level = level
        trust.auto_payout_limit = limit
        trust.successful_events = successful_payouts
        trust.total_payouts = total_paid
        trust.chargeback_count = lost_count
        trust.chargeback_amount = lost_amount
        await session.commit()

        if previous != level:
            logger.info(f"Уровень доверия организации {organization_id}: {previous} -> {level}")
        return level
