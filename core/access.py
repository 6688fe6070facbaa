from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User, UserRole
from security import jwt as jwt_utils


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    """FastAPI dependency that returns the active user named by the bearer token."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt_utils.decode_access(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return user


def require_role(*roles: UserRole):
    """Dependency to require one of ``roles`` for the current user."""
    allowed = {UserRole(role).value for role in roles}

    def _check_role(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {' or '.join(sorted(allowed))} role",
            )
        return user

    return _check_role
