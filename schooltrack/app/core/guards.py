"""
Security guards for role-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from schooltrack.app.models.enums import UserRole
from schooltrack.app.core.dependencies import get_session_context
from schooltrack.app.core.session import SessionContext


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/driver/trip/start")
        async def start_trip(ctx: SessionContext = Depends(require_role([UserRole.DRIVER]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that yields the caller's SessionContext

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
        if ctx.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return ctx

    return role_checker


require_driver = require_role([UserRole.DRIVER])
require_student = require_role([UserRole.STUDENT])
require_admin = require_role([UserRole.ADMIN])
