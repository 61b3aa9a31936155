"""
yieldvault.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from yieldvault.config import YieldVaultConfig, load_config
from yieldvault.database.engine import create_db_engine
from yieldvault.services.payment_executor import PaymentExecutor

_WEAK_SECRETS = frozenset({
    "yieldvault-dev-secret-change-me",
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


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> YieldVaultConfig:
    return load_config()


@lru_cache(maxsize=1)
def _payment_executor(url: str, timeout: float) -> PaymentExecutor:
    return PaymentExecutor(url, timeout=timeout)


def get_payment_executor(
    cfg: Annotated[YieldVaultConfig, Depends(get_config)],
) -> PaymentExecutor:
    """Shared executor client; 503 when no executor URL is configured."""
    if not cfg.payment_executor_url:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Payouts are not configured")
    return _payment_executor(cfg.payment_executor_url, cfg.payment_executor_timeout)


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Validate JWT and return the user handle carried in ``sub``."""
    payload = _decode_bearer(authorization)
    handle = str(payload.get("sub") or "").strip()
    if not handle:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return handle
