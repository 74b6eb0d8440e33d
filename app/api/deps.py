"""
FastAPI dependencies (DB session, authentication)
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.application.errors import AuthenticationError, PermissionDeniedError
from app.domain.permissions import Principal
from app.infrastructure.db.session import get_db as _get_db
from app.infrastructure.db.models import User


# Re-export get_db for routers and test overrides
get_db = _get_db


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Current user from the session cookie.

    Raises:
        AuthenticationError(401): not logged in or the user no longer exists
        PermissionDeniedError(403): the account was blocked or declined after login

    Usage:
        @router.get("/profile")
        def get_profile(user: User = Depends(get_current_user)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise AuthenticationError("Not authenticated")

    user = db.get(User, user_id)
    if not user:
        request.session.clear()
        raise AuthenticationError("User not found")
    if user.account_status in ("blocked", "declined"):
        request.session.clear()
        raise PermissionDeniedError(f"Your account has been {user.account_status}")

    return user


def get_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal(id=user.id, role=user.role, name=user.fullname or user.name)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise PermissionDeniedError("Admin access required")
    return user
