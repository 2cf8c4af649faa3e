"""Bearer token issue and validation.

Tokens are HS256 JWTs carrying the ``account`` claim and an ``exp``
expiry. The HTTP layer only needs :func:`decode_token`; :func:`create_token`
exists for operators and tests.
"""

from __future__ import annotations

import time
from typing import Optional

import jwt


class AuthError(Exception):
    """The bearer token is missing, malformed, expired or forged."""


def create_token(account: str, secret: str, ttl_seconds: int = 3600, now: Optional[float] = None) -> str:
    if not secret:
        raise AuthError("JWT_SECRET is not configured")
    issued = int(now if now is not None else time.time())
    payload = {"account": account, "iat": issued, "exp": issued + ttl_seconds}
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_token(token: str, secret: str) -> str:
    """Validate ``token`` and return the account it was issued to."""
    if not secret:
        raise AuthError("JWT_SECRET is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], options={"require": ["exp"]})
    except jwt.PyJWTError as exc:
        raise AuthError(f"invalid token: {exc}") from exc
    account = claims.get("account")
    if not isinstance(account, str) or not account:
        raise AuthError("token carries no account")
    return account


def bearer_token(header: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        raise AuthError("missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header is not a bearer token")
    return token.strip()
