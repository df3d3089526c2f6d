"""Модели налоговой информации и журнала комплаенса"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
import enum
from database.connection import Base, generate_id


class TaxInfoStatus(str, enum.Enum):
    """Статус налоговой формы"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TaxInformation(Base):
    """Налоговая форма организации (W-9)"""
    __tablename__ = "tax_information"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    tax_form_type = Column(String(20), default="w9", nullable=False)
    legal_name = Column(String(255), nullable=False)
    status = Column(String(50), default=TaxInfoStatus.PENDING.value, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class ComplianceAuditLog(Base):
    """Журнал событий комплаенса"""
    __tablename__ = "compliance_audit_log"

    id = Column(String(36), primary_key=True, default=generate_id)
    event_type = Column(String(100), nullable=False, index=True)
    user_id = Column(String(128), nullable=True)
    organization_id = Column(String(36), nullable=True, index=True)
    details = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
