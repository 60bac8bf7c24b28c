"""
FastAPI dependencies for the Agency Portal.
"""

from portal.dependencies.auth import (
    get_current_user,
    require_admin,
    require_role,
    AuthDependencies,
)

__all__ = [
    "get_current_user",
    "require_admin",
    "require_role",
    "AuthDependencies",
]
