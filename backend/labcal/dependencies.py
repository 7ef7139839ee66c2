"""FastAPI dependencies for the acting user.

Authentication happens upstream; the gateway forwards the identity in
``X-User-Id`` / ``X-User-Email`` / ``X-User-Role`` headers.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from labcal.schemas.user import CurrentUser
from labcal.services.authorization import require_validator


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return CurrentUser(id=x_user_id, email=x_user_email or None, role=x_user_role or None)


def get_validator(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Laboratory staff only (``LABORANTIN*`` / ``ADMINLABO``)."""
    require_validator(user)
    return user
