"""
Account schemas: registration, login and the token handed back to devices.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional
from schooltrack.app.models.enums import UserRole


class UserRegister(BaseModel):
    """Self-registration. Drivers are the default; ADMIN is refused by the endpoint."""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = Field(default=None, max_length=200)
    role: UserRole = UserRole.DRIVER


class UserLogin(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    username: str
    email: str
    role: UserRole


class UserResponse(BaseModel):
    id: int
    email: str
    username: str
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
