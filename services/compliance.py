"""Налоговый комплаенс и журнал аудита"""
import json
import logging
from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from database.models.compliance import ComplianceAuditLog, TaxInformation
from services.dto import TaxInfo

logger = logging.getLogger(__name__)


class ComplianceGateway:
    """Налоговая информация организаций и журнал событий комплаенса"""

    async def get_organization_tax_info(
        self,
        session: AsyncSession,
        organization_id: str
    ) -> Optional[TaxInfo]:
        """Последняя налоговая форма организации"""
        result = await session.execute(
            select(TaxInformation)
            .where(TaxInformation.organization_id == organization_id)
            .order_by(TaxInformation.created_at.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if not row:
            return None
        return TaxInfo(
            id=row.id,
            organization_id=row.organization_id,
            status=row.status,
            verified_at=row.verified_at,
        )

    async def log_compliance_event(
        self,
        session: AsyncSession,
        event_type: str,
        organization_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> ComplianceAuditLog:
        """Записать событие в журнал (коммит делает вызывающий)"""
        entry = ComplianceAuditLog(
            event_type=event_type,
            organization_id=organization_id,
            user_id=user_id,
            details=json.dumps(details, default=str) if details else None,
        )
        session.add(entry)
        logger.info(f"Комплаенс: {event_type} (организация {organization_id})")
        return entry
