"""
JWT access tokens.

Claims: `sub` (username), `user_id`, `role` and `exp`. The SessionContext
handed to services is rebuilt from these claims on every request.
"""

from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from schooltrack.app.core.clock import utcnow
from schooltrack.app.core.config import settings
from schooltrack.app.models.enums import UserRole


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign `data` with an expiry (default `access_token_expire_minutes`)."""
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def access_token_for(user_id: int, username: str, role: UserRole) -> str:
    return create_access_token({"sub": username, "user_id": user_id, "role": role.value})


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the claims of a valid, unexpired token, otherwise None."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
