"""
Explicit per-request session context.

Services receive a SessionContext instead of reading the current user or role
from ambient state. Built from the verified JWT payload.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from schooltrack.app.models.enums import UserRole


@dataclass(frozen=True)
class SessionContext:
    user_id: int
    username: str
    role: UserRole
    token: Optional[str] = None

    @classmethod
    def from_token_payload(cls, payload: Dict[str, Any], token: Optional[str] = None) -> "SessionContext":
        return cls(
            user_id=payload["user_id"],
            username=payload.get("sub", ""),
            role=UserRole(payload["role"]),
            token=token,
        )

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)
