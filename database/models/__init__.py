"""Модели базы данных"""
from .user import User
from .organization import Organization, OrganizationMember
from .event import AuctionEvent
from .item import EventItem
from .bid import Bid, SilentBid
from .platform_fee import PlatformFee
from .payout import OrganizationPayout, PayoutReserve
from .trust import OrganizationTrust
from .chargeback import Chargeback
from .compliance import TaxInformation, ComplianceAuditLog

__all__ = [
    "User",
    "Organization",
    "OrganizationMember",
    "AuctionEvent",
    "EventItem",
    "Bid",
    "SilentBid",
    "PlatformFee",
    "OrganizationPayout",
    "PayoutReserve",
    "OrganizationTrust",
    "Chargeback",
    "TaxInformation",
    "ComplianceAuditLog",
]
