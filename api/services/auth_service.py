"""
Bearer token verification. Tokens are minted by the identity service;
this side only holds the RS256 public key.
"""

from typing import Optional

from jose import jwt, JWTError
import structlog

from api.config import settings

logger = structlog.get_logger()

_public_key: Optional[str] = None


def _load_public_key() -> str:
    global _public_key
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
    return _public_key


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, _load_public_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    for claim in ("sub", "tenant_id", "role"):
        if not payload.get(claim):
            raise JWTError(f"Missing claim: {claim}")
    return payload
