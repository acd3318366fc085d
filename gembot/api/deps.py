"""
gembot.api.deps — FastAPI dependency injection
===============================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError

from gembot.config import MAX_SETTINGS_CACHE_TTL
from gembot.database.engine import DEFAULT_TIMEOUT_SECONDS, Database
from gembot.engine.cache import SettingsCache
from gembot.services.ledger_service import LedgerService
from gembot.services.settings_service import SettingsStore

_WEAK_SECRETS = frozenset({
    "gembot-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


def _storage_timeout() -> float:
    return float(os.getenv("STORAGE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))


@lru_cache(maxsize=1)
def get_database() -> Database:
    """The process-wide handle; closed by the app lifespan."""
    return Database.open(timeout_seconds=_storage_timeout())


@lru_cache(maxsize=1)
def get_ledger() -> LedgerService:
    db = get_database()
    settings = SettingsStore(db.engine, SettingsCache(MAX_SETTINGS_CACHE_TTL))
    return LedgerService(db, settings)


Ledger = Annotated[LedgerService, Depends(get_ledger)]


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload
