# app/dependencies/authz.py
"""
Actor resolution for the API.

Authentication happens upstream; the caller's user id arrives in the
X-User-Id header and is resolved against the users table here.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.user import User


def get_current_user(
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    user = db.get(User, x_user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user.",
        )
    return user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """
    Pharmacist or admin only.

    Usage:

    @router.post("/{id}/verify")
    def verify(user: User = Depends(require_staff)):
        ...
    """
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient role permissions.",
        )
    return current_user


def ensure_owner_or_staff(current_user: User, owner_id: int) -> None:
    if current_user.id != owner_id and not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access another user's records.",
        )
