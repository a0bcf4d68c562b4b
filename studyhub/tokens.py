from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .errors import TokenExpired, TokenInvalid, TokenTypeMismatch
from .settings import settings

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    type: str


def _sign(payload: dict, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_sign = {**payload, "iat": now, "exp": now + ttl}
    return jwt.encode(to_sign, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def issue_access_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    ttl = ttl if ttl is not None else timedelta(days=settings.ACCESS_TOKEN_TTL_DAYS)
    return _sign({"userId": str(user_id)}, ttl)


def issue_refresh_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    ttl = ttl if ttl is not None else timedelta(days=settings.REFRESH_TOKEN_TTL_DAYS)
    return _sign({"userId": str(user_id), "type": REFRESH}, ttl)


def verify_token(token: str, expected_type: str = ACCESS) -> TokenClaims:
    """Decode and check a token.

    Tokens without a ``type`` claim are access tokens, so a refresh token is
    rejected where an access token is expected and vice versa.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenExpired() from e
    except jwt.InvalidTokenError as e:
        raise TokenInvalid() from e

    user_id = payload.get("userId")
    if not user_id:
        raise TokenInvalid()

    token_type = payload.get("type") or ACCESS
    if token_type != expected_type:
        raise TokenTypeMismatch()
    return TokenClaims(user_id=str(user_id), type=token_type)
