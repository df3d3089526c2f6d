"""Модели организации и её участников"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from database.connection import Base, generate_id


class OrganizationType(str, enum.Enum):
    """Тип организации"""
    NONPROFIT = "nonprofit"
    SCHOOL = "school"
    RELIGIOUS = "religious"
    CLUB = "club"
    COMPANY = "company"
    OTHER = "other"


class MemberRole(str, enum.Enum):
    """Роль участника организации"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Organization(Base):
    """Модель организации, проводящей благотворительные аукционы"""
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    org_type = Column(String(50), default=OrganizationType.OTHER.value, nullable=False)
    stripe_account_id = Column(String(255), nullable=True)  # Подключенный аккаунт для переводов
    stripe_payouts_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи
    members = relationship("OrganizationMember", back_populates="organization")

    @property
    def is_nonprofit(self) -> bool:
        return self.org_type == OrganizationType.NONPROFIT.value

    @property
    def can_receive_payouts(self) -> bool:
        """Есть ли у организации аккаунт с включенными выплатами"""
        return bool(self.stripe_account_id) and bool(self.stripe_payouts_enabled)


class OrganizationMember(Base):
    """Участник организации"""
    __tablename__ = "organization_members"
    __table_args__ = (UniqueConstraint("organization_id", "user_id", name="uq_org_members_user"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(50), default=MemberRole.MEMBER.value, nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи
    organization = relationship("Organization", back_populates="members")
