"""
Campus Eats — Route dependencies for the authenticated caller
"""
from fastapi import Depends, HTTPException, Request, status

from campus_eats.core.security import CurrentUser


def get_current_user(request: Request) -> CurrentUser:
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")
    return user


def require_staff(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Kitchen staff only.")
    return user


def require_manager(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_manager:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Managers only.")
    return user
