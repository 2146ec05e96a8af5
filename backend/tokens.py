"""Signed bearer tokens issued at login and checked on every request."""
import logging
import os
from datetime import UTC, datetime, timedelta

import jwt

from errors import Unauthorized
from models import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEV_SECRET = "meal-orders-dev-secret-change-me"


def jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if secret:
        return secret
    env = os.getenv("ENV", os.getenv("RENDER", "").lower() or "dev")
    # Guard against signing with the development secret in production
    if env in ("prod", "production") or os.getenv("RENDER"):
        raise RuntimeError("JWT_SECRET missing in production; refusing to issue or verify tokens.")
    return DEV_SECRET


def token_ttl() -> timedelta:
    return timedelta(hours=int(os.getenv("JWT_EXPIRES_HOURS", str(7 * 24))))


def issue_token(user: User, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "is_admin": bool(user.is_admin),
        "iat": now,
        "exp": now + token_ttl(),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=ALGORITHM)


def extract_bearer(authorization: str | None) -> str | None:
    """Token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def decode_token(token: str) -> int:
    """Return the user id a valid token was issued for."""
    try:
        claims = jwt.decode(token, jwt_secret(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
        return int(claims["sub"])
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Token has expired") from e
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.info(f"Token verification failed: {str(e)}")
        raise Unauthorized("Invalid or expired token") from e
