"""Request identity. Sessions are issued upstream; we only see the resolved id header."""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .db import get_db
from .models import AdminUser, User


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def optional_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Optional[User]:
    return db.get(User, x_user_id) if x_user_id else None


def current_admin(
    x_admin_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> AdminUser:
    if not x_admin_id:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    admin = db.get(AdminUser, x_admin_id)
    if admin is None:
        raise HTTPException(status_code=403, detail="Admin access required")
    return admin
