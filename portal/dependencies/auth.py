"""
FastAPI dependencies for authentication and authorization.

Access tokens are issued by the identity provider; this service only
verifies them. Provides:
- JWT bearer token validation
- Role-based access control
"""

import uuid
from typing import Optional
from fastapi import Depends, HTTPException, status, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from portal.config import get_settings
from portal.database import get_db
from portal.models import User, UserRole

# HTTP Bearer security scheme for JWT
bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT.

    Raises:
        JWTError: If the token is invalid or expired
    """
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


class AuthDependencies:
    """Authentication and authorization dependencies for FastAPI"""

    @staticmethod
    async def get_current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
        db: Session = Depends(get_db)
    ) -> User:
        """
        Get the current user from the bearer token.

        The token's ``sub`` claim is the portal user id.

        Raises:
            HTTPException: 401 if authentication fails, 403 if the user is inactive
        """
        if not credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="No authentication credentials provided",
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            payload = decode_token(credentials.credentials)
        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Could not validate credentials: {str(e)}"
            )

        try:
            user_id = uuid.UUID(str(payload.get("sub")))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload"
            )

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        return user

    @staticmethod
    def require_role(*allowed_roles: UserRole):
        """
        Create dependency that requires user to have one of the specified roles.

        Usage:
            @router.post("/admin/invoices")
            async def create_invoice(user: User = Depends(require_role(UserRole.ADMIN))):
                ...
        """
        async def role_checker(
            user: User = Depends(AuthDependencies.get_current_user)
        ) -> User:
            if user.role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required role: {', '.join(r.value for r in allowed_roles)}"
                )
            return user

        return role_checker

    @staticmethod
    def require_admin():
        return AuthDependencies.require_role(UserRole.ADMIN)


# Convenience exports for simpler imports
get_current_user = AuthDependencies.get_current_user
require_admin = AuthDependencies.require_admin
require_role = AuthDependencies.require_role
