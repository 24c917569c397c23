from __future__ import annotations

from functools import lru_cache
from typing import Any

from jose import JWTError, jwt

from app.core.settings import settings


class JWTKeyError(RuntimeError):
    pass


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


@lru_cache(maxsize=1)
def _load_public_key() -> str:
    if settings.jwt_public_key:
        return settings.jwt_public_key
    if settings.jwt_public_key_path:
        return _read_key(settings.jwt_public_key_path)
    raise JWTKeyError("JWT public key not configured")


def _verification_key() -> str:
    # HMAC algorithms share the application secret
    if settings.jwt_algorithm.upper().startswith("HS"):
        return settings.secret_key
    return _load_public_key()


def decode_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, _verification_key(), algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if not payload.get("sub"):
        raise ValueError("Token has no subject")
    return payload
