"""Типизированные результаты запросов и операций"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class PayoutAmounts(_Frozen):
    """Разбивка валовой суммы на комиссии, резерв и выплату"""
    gross_amount: Decimal
    stripe_fees: Decimal
    platform_fee: Decimal
    reserve_amount: Decimal
    net_payout: Decimal


class WinningBidSummary(_Frozen):
    """Победитель по лоту"""
    item_id: str
    item_title: str
    winner_id: str
    winner_email: str
    winner_name: Optional[str] = None
    winning_amount: Decimal
    platform_fee: Decimal


class EventCompletionResult(_Frozen):
    """Итоги события"""
    event_id: str
    total_raised: Decimal
    total_platform_fees: Decimal
    winning_bids: List[WinningBidSummary]


class FraudAssessment(_Frozen):
    """Флаги риска и вердикт о ручной проверке"""
    flags: List[str]
    requires_review: bool


class TrustInfo(_Frozen):
    """Уровень доверия организации"""
    trust_level: str
    auto_payout_limit: Decimal
    successful_events: int = 0
    total_payouts: Decimal = Decimal("0")
    chargeback_count: int = 0


class PayoutRunResult(BaseModel):
    """Результат обработки выплат"""
    processed: int = 0
    held: int = 0
    errors: List[str] = Field(default_factory=list)


class ReserveRunResult(BaseModel):
    """Результат обработки резервов"""
    released: int = 0
    forfeited: int = 0
    errors: List[str] = Field(default_factory=list)


class PayoutSummary(_Frozen):
    """Сводка по выплате"""
    id: str
    event_id: str
    event_name: str
    organization_id: str
    organization_name: str
    gross_amount: Decimal
    stripe_fees: Decimal
    platform_fee: Decimal
    reserve_amount: Decimal
    net_payout: Decimal
    status: str
    eligible_at: datetime
    flags: List[str]
    requires_review: bool


class PaymentIntentResult(_Frozen):
    """Созданный платеж победителя"""
    client_secret: str
    payment_intent_id: str
    amount: Decimal
    platform_fee: Decimal
    item_total: Decimal


class PublishIntentResult(_Frozen):
    """Созданный платеж за публикацию"""
    client_secret: str
    payment_intent_id: str
    amount: Decimal
    tier: str
    event_name: str


class PaymentConfirmation(_Frozen):
    success: bool
    message: str


class CancellationResult(_Frozen):
    """Результат отмены события"""
    cancelled: bool
    refunded: bool
    refund_amount: Optional[Decimal] = None
    message: str


class FeeSummaryItem(_Frozen):
    id: str
    title: str
    winning_bid: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None
    payment_status: Optional[str] = None


class EventFeeSummary(_Frozen):
    """Сводка комиссий по событию"""
    total_raised: Decimal
    total_platform_fees: Decimal
    pending_payments: int
    completed_payments: int
    items: List[FeeSummaryItem]


class ProcessorPaymentIntent(_Frozen):
    """Платеж на стороне процессора"""
    id: str
    status: str
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class ProcessorTransfer(_Frozen):
    id: str
    amount: int


class ProcessorRefund(_Frozen):
    id: str
    status: Optional[str] = None


class TaxInfo(_Frozen):
    """Налоговая форма организации"""
    id: str
    organization_id: str
    status: str
    verified_at: Optional[datetime] = None
