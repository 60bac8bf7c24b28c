"""
Tenant models: users, their plan subscription, organizations and team invites.

Credentials live with the external identity provider; a User row is the
portal-side profile keyed by the provider's subject id.
"""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from portal.database import Base


class UserRole(str, enum.Enum):
    """Portal roles"""
    ADMIN = "ADMIN"              # Agency staff
    CLIENT = "CLIENT"            # Paying client (organization owner)
    TEAM_MEMBER = "TEAM_MEMBER"  # Invited member of a client organization


class SubscriptionStatus(str, enum.Enum):
    """Mirrors the payment provider's subscription status"""
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    INCOMPLETE = "INCOMPLETE"


class User(Base):
    """Portal user profile"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=True)
    company = Column(String(200), nullable=True)

    # Stored as string, validated by Python enum
    role = Column(String(20), nullable=False, default=UserRole.CLIENT.value)
    is_active = Column(Boolean, default=True, nullable=False)

    organization_id = Column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL", use_alter=True, name="fk_users_organization_id"),
        nullable=True,
        index=True,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    subscription = relationship("Subscription", back_populates="user", uselist=False, cascade="all, delete-orphan")
    organization = relationship("Organization", foreign_keys=[organization_id], back_populates="members")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Subscription(Base):
    """A user's plan subscription, synced from the payment provider"""
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Payment provider price identifier; resolves to a plan tier
    plan_id = Column(String(100), nullable=False, default="")
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    current_period_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="subscription")

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    def __repr__(self):
        return f"<Subscription(user_id={self.user_id}, plan_id={self.plan_id}, status={self.status})>"


class Organization(Base):
    """Client team; the owner's subscription governs the whole team"""
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    owner_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("User", foreign_keys="User.organization_id", back_populates="organization")

    def __repr__(self):
        return f"<Organization(id={self.id}, name={self.name})>"


class TeamInvite(Base):
    """Pending invitation to join an organization"""
    __tablename__ = "team_invites"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=UserRole.TEAM_MEMBER.value)

    token = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    created_by_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    organization = relationship("Organization")

    def __repr__(self):
        return f"<TeamInvite(email={self.email}, organization_id={self.organization_id}, used={self.used_at is not None})>"
