import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from .db import get_db
from .errors import AccountDeactivated, ApiError, TokenMissing, UserNotFound
from .models import User
from .tokens import verify_token

log = logging.getLogger("studyhub.auth")


def _bearer(authorization: str) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        return ""
    return authorization.split(" ", 1)[1].strip()


def _authenticate(db: Session, authorization: str) -> User:
    token = _bearer(authorization)
    if not token:
        raise TokenMissing()

    claims = verify_token(token)
    user = db.get(User, claims.user_id)
    if not user:
        raise UserNotFound()
    if not user.is_active:
        raise AccountDeactivated()
    return user


def get_current_user(
    request: Request,
    authorization: str = Header(default=""),
    db: Session = Depends(get_db),
) -> User:
    user = _authenticate(db, authorization)
    request.state.user = user
    request.state.user_id = user.id
    return user


def get_optional_user(
    request: Request,
    authorization: str = Header(default=""),
    db: Session = Depends(get_db),
) -> Optional[User]:
    try:
        user = _authenticate(db, authorization)
    except ApiError as e:
        # anonymous on any failure
        log.debug("Optional auth fell back to anonymous: %s", e)
        user = None
    request.state.user = user
    request.state.user_id = user.id if user else None
    return user
