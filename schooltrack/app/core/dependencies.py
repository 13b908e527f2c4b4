"""
Request authentication.

`get_current_user` verifies the bearer token (signature, expiry, revocation)
and re-reads the account so a deactivated user is locked out immediately.
`get_session_context` turns the verified claims into the SessionContext
that services take as an explicit argument.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from schooltrack.app.core.jwt import decode_access_token
from schooltrack.app.core.session import SessionContext
from schooltrack.app.core.token_revocation import is_token_revoked
from schooltrack.app.db.session import get_db
from schooltrack.app.models.enums import UserRole
from schooltrack.app.models.user import User

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise _unauthorized("Could not validate credentials")
    if not payload.get("user_id"):
        raise _unauthorized("Invalid token payload")
    if await is_token_revoked(token):
        raise _unauthorized("Token has been revoked")

    user = await db.get(User, payload["user_id"])
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return {**payload, "_token": token}


async def get_session_context(current_user: dict = Depends(get_current_user)) -> SessionContext:
    if current_user.get("role") not in {role.value for role in UserRole}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid role in token")
    return SessionContext.from_token_payload(current_user, token=current_user.get("_token"))
