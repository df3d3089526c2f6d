from datetime import timedelta
from decimal import Decimal
import pytest
from sqlalchemy import func, select
from database.models.chargeback import Chargeback, ChargebackStatus
from database.models.payout import OrganizationPayout, PayoutReserve, PayoutStatus, ReserveStatus
from database.models.trust import OrganizationTrust, TrustLevel
from services.chargebacks import ChargebackService
from services.clock import utcnow
from services.trust import TrustManager
from tests.helpers import make_ended_event, make_org

pytestmark = pytest.mark.asyncio


@pytest.fixture
def chargebacks(settings):
    return ChargebackService(TrustManager(settings))


async def _paid_out_event(session, org):
    event = await make_ended_event(session, org, 200)
    payout = OrganizationPayout(
        organization_id=org.id,
        event_id=event.id,
        gross_amount=Decimal("200"),
        stripe_fees=Decimal("6.10"),
        platform_fee=Decimal("1.00"),
        reserve_amount=Decimal("19.29"),
        net_payout=Decimal("173.61"),
        status=PayoutStatus.COMPLETED.value,
        eligible_at=utcnow() - timedelta(days=3),
    )
    session.add(payout)
    await session.flush()
    session.add(PayoutReserve(
        payout_id=payout.id,
        organization_id=org.id,
        amount=Decimal("19.29"),
        release_at=utcnow() + timedelta(days=20),
        status=ReserveStatus.HELD.value,
    ))
    await session.commit()
    return event, payout


async def test_chargeback_is_linked_to_payout(session, chargebacks):
    org = await make_org(session)
    event, payout = await _paid_out_event(session, org)

    chargeback_id = await chargebacks.record_chargeback(
        session, "dp_1", "pi_1", org.id, event.id, Decimal("45"), "fraudulent"
    )

    chargeback = await session.get(Chargeback, chargeback_id)
    assert chargeback.status == ChargebackStatus.OPEN.value
    assert chargeback.payout_id == payout.id
    assert chargeback.amount == Decimal("45.00")

    # Открытый спор не понижает доверие
    trust = await session.scalar(select(OrganizationTrust).where(OrganizationTrust.organization_id == org.id))
    assert trust.trust_level == TrustLevel.NEW.value


async def test_redelivered_dispute_is_recorded_once(session, chargebacks):
    org = await make_org(session)

    first = await chargebacks.record_chargeback(session, "dp_1", "pi_1", org.id, None, Decimal("10"), None)
    second = await chargebacks.record_chargeback(session, "dp_1", "pi_1", org.id, None, Decimal("10"), None)

    assert first == second
    assert await session.scalar(select(func.count(Chargeback.id))) == 1
    chargeback = await session.get(Chargeback, first)
    assert chargeback.payout_id is None


async def test_lost_dispute_marks_reserve_deduction_and_flags_org(session, chargebacks):
    org = await make_org(session)
    event, _ = await _paid_out_event(session, org)
    chargeback_id = await chargebacks.record_chargeback(
        session, "dp_1", "pi_1", org.id, event.id, Decimal("45"), "fraudulent"
    )

    await chargebacks.update_chargeback_status(session, "dp_1", "lost")

    chargeback = await session.get(Chargeback, chargeback_id)
    assert chargeback.status == ChargebackStatus.LOST.value
    assert chargeback.resolved_at is not None
    assert chargeback.deducted_from_reserve

    trust = await session.scalar(select(OrganizationTrust).where(OrganizationTrust.organization_id == org.id))
    assert trust.trust_level == TrustLevel.FLAGGED.value
    assert trust.auto_payout_limit == Decimal("0")


async def test_won_dispute_keeps_trust(session, chargebacks):
    org = await make_org(session)
    event, _ = await _paid_out_event(session, org)
    chargeback_id = await chargebacks.record_chargeback(
        session, "dp_1", "pi_1", org.id, event.id, Decimal("45"), None
    )

    await chargebacks.update_chargeback_status(session, "dp_1", "won")

    chargeback = await session.get(Chargeback, chargeback_id)
    assert chargeback.status == ChargebackStatus.WON.value
    assert not chargeback.deducted_from_reserve
    trust = await session.scalar(select(OrganizationTrust).where(OrganizationTrust.organization_id == org.id))
    assert trust.trust_level == TrustLevel.NEW.value


async def test_unknown_dispute_and_status(session, chargebacks):
    await chargebacks.update_chargeback_status(session, "dp_missing", "lost")

    with pytest.raises(ValueError):
        await chargebacks.update_chargeback_status(session, "dp_missing", "escalated")
