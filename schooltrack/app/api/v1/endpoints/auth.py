"""
Account endpoints for driver, student and parent devices.

Register and login both hand back a bearer token; logout revokes the
presented token so a lost device can be signed out.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from schooltrack.app.db.session import get_db
from schooltrack.app.models.user import User
from schooltrack.app.models.enums import UserRole
from schooltrack.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse
from schooltrack.app.core.security import get_password_hash, verify_password
from schooltrack.app.core.jwt import access_token_for
from schooltrack.app.core.dependencies import get_current_user
from schooltrack.app.core.token_revocation import revoke_token
from schooltrack.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_for(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=access_token_for(user.id, user.username, user.role),
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=user.role
    )


async def _find_user(db: AsyncSession, login: str) -> Optional[User]:
    result = await db.execute(select(User).where(or_(User.username == login, User.email == login)))
    return result.scalars().first()


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Create a driver, student or parent account. Admins are provisioned out of band."""
    if user_data.role == UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin users cannot be registered via API")

    for login, field in ((user_data.username, "Username"), (user_data.email, "Email")):
        existing = await _find_user(db, login)
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} already registered")

    user = User(
        email=user_data.email,
        username=user_data.username,
        full_name=user_data.full_name,
        hashed_password=get_password_hash(user_data.password),
        role=user_data.role,
        is_active=True
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    return _token_for(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Log in by username or email. Every attempt is audited."""
    ip_address = request.client.host if request.client else None
    user = await _find_user(db, credentials.username)

    failure = None
    if user is None:
        failure = "User not found"
    elif not verify_password(credentials.password, user.hashed_password):
        failure = "Invalid password"
    elif not user.is_active:
        failure = "Account is inactive"

    await log_event(
        db,
        AuditAction.LOGIN_FAILED if failure else AuditAction.LOGIN_SUCCESS,
        actor_id=user.id if user else None,
        actor_username=user.username if user else credentials.username,
        metadata={"reason": failure} if failure else None,
        ip_address=ip_address
    )

    if failure == "Account is inactive":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user account")
    if failure:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _token_for(user)


@router.post("/logout")
async def logout(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    revoked = await revoke_token(current_user["_token"], current_user["user_id"])

    await log_event(
        db,
        AuditAction.LOGOUT,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        metadata={"revoked": revoked}
    )

    return {"message": "Logged out", "revoked": revoked}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await db.get(User, current_user["user_id"])
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)
