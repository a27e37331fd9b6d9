"""HS256 bearer tokens for customers, agents and admins.

The ``sub`` claim carries the user id; ``role`` is informational only, the
authoritative role is always re-read from ``User.user_type``.
"""
import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret"


def _ttl() -> int:
    try:
        return max(60, int((os.getenv("JWT_TTL_SECONDS") or "").strip() or DEFAULT_TTL_SECONDS))
    except ValueError:
        return DEFAULT_TTL_SECONDS


def create_token(user_id: int, *, role: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    now = int(time.time())
    payload = {"sub": str(int(user_id)), "iat": now, "exp": now + int(ttl_seconds or _ttl())}
    if role:
        payload["role"] = str(role).strip().lower()
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.info("jwt_expired")
        return None
    except jwt.InvalidTokenError:
        return None


def bearer_token(auth_header: str) -> Optional[str]:
    scheme, _, value = (auth_header or "").strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def token_subject(auth_header: str) -> Optional[int]:
    """User id from an ``Authorization`` header, or None if absent, expired or malformed."""
    token = bearer_token(auth_header)
    payload = decode_token(token) if token else None
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
