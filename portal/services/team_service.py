"""
Team Service

Organizations and team invitations. An organization is created lazily the
first time its owner does something that needs one.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import AuthorizationError, DatabaseError, NotFoundError, ValidationError
from portal.models import User, UserRole, Organization, TeamInvite
from portal.services.entitlements import EntitlementService

logger = logging.getLogger(__name__)

# Roles an organization owner may hand out through an invitation
INVITABLE_ROLES = {UserRole.TEAM_MEMBER.value}


def ensure_organization(db: Session, user: User) -> Organization:
    """Return the user's organization, creating one they own if needed"""
    if user.organization_id is not None:
        return user.organization

    organization = Organization(
        name=user.company or f"{user.name or user.email}'s Team",
        owner_id=user.id,
    )
    db.add(organization)
    db.flush()

    user.organization = organization
    db.flush()

    logger.info(f"Created organization '{organization.name}' for user {user.id}")
    return organization


class TeamService:
    """Service for team membership and invitations"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.entitlements = EntitlementService(db, self.settings)

    def invite(self, user: User, email: str, role: Optional[str] = None) -> TeamInvite:
        """
        Invite someone to the user's organization.

        Seats are checked against the user's plan before anything is written.
        """
        role = role or UserRole.TEAM_MEMBER.value
        if role not in INVITABLE_ROLES:
            raise ValidationError(f"Invalid invite role: {role}")

        self.entitlements.check_can_invite(user)

        organization = ensure_organization(self.db, user)
        email = email.strip().lower()

        existing_user = self.db.query(User).filter(User.email == email).first()
        if existing_user and existing_user.organization_id == organization.id:
            raise ValidationError("User is already a team member")

        pending = self.db.query(TeamInvite).filter(
            TeamInvite.email == email,
            TeamInvite.organization_id == organization.id,
            TeamInvite.used_at.is_(None),
            TeamInvite.expires_at > datetime.utcnow(),
        ).first()
        if pending:
            raise ValidationError("Invitation already sent to this email")

        invite = TeamInvite(
            organization_id=organization.id,
            email=email,
            role=role,
            token=secrets.token_hex(32),
            expires_at=datetime.utcnow() + timedelta(days=self.settings.team_invite_expire_days),
            created_by_id=user.id,
        )
        self.db.add(invite)
        self.db.commit()
        self.db.refresh(invite)

        logger.info(f"Team invite created for organization {organization.id}")
        return invite

    def list_pending_invites(self, user: User) -> List[TeamInvite]:
        if user.organization_id is None:
            return []
        return self.db.query(TeamInvite).filter(
            TeamInvite.organization_id == user.organization_id,
            TeamInvite.used_at.is_(None),
        ).order_by(TeamInvite.created_at.desc()).all()

    def accept(self, user: User, token: str) -> Organization:
        """
        Join an organization with an invite token.

        The membership change and marking the invite used are committed
        together, so a failure leaves neither applied.
        """
        invite = self.db.query(TeamInvite).filter(TeamInvite.token == token).first()
        if not invite:
            raise NotFoundError("Invalid invitation", resource_type="invite")
        if invite.used_at is not None:
            raise ValidationError("Invitation already used")
        if invite.expires_at < datetime.utcnow():
            raise ValidationError("Invitation expired")

        if (user.email or "").strip().lower() != (invite.email or "").strip().lower():
            raise AuthorizationError(
                f"This invitation was sent to {invite.email}, but you're signed in as {user.email}. "
                f"Please sign in with the correct email address."
            )

        organization = invite.organization
        self.entitlements.check_can_join(organization)

        try:
            user.organization = organization
            user.role = invite.role if invite.role in INVITABLE_ROLES else UserRole.TEAM_MEMBER.value
            invite.used_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to add user {user.id} to organization {organization.id}: {e}")
            raise DatabaseError("Could not join team, please try again")

        logger.info(f"User {user.id} joined organization {organization.id}")
        return organization

    def list_members(self, user: User) -> dict:
        """Members of the user's organization with seat usage"""
        entitlements = self.entitlements.entitlements_for(user)

        if user.organization_id is None:
            return {
                "members": [self._member(user, is_owner=True)],
                "max_seats": entitlements.max_seats,
                "current_seats": 1,
            }

        organization = user.organization
        members = self.db.query(User).filter(
            User.organization_id == organization.id
        ).order_by(User.created_at.asc()).all()

        return {
            "members": [self._member(m, is_owner=m.id == organization.owner_id) for m in members],
            "max_seats": entitlements.max_seats,
            "current_seats": len(members),
        }

    @staticmethod
    def _member(user: User, is_owner: bool) -> dict:
        return {
            "id": str(user.id),
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "is_owner": is_owner,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
