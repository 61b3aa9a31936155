"""
yieldvault.errors — Exception Hierarchy
========================================

Services raise these; the API layer maps them onto HTTP status codes:

    ValidationError       → 400
    NotFoundError         → 404
    ClaimRejected         → 409
    PaymentExecutorError  → 503
"""

from __future__ import annotations


class YieldVaultError(Exception):
    """Base class for all domain errors."""


class ValidationError(YieldVaultError, ValueError):
    """Input rejected before anything was written."""


class NotFoundError(YieldVaultError, LookupError):
    """Referenced chain, contribution, reward or period does not exist."""


class ClaimRejected(YieldVaultError):
    """A reward could not move to *withdrawn* (wrong owner or already settled)."""

    def __init__(self, reward_id: int, reason: str) -> None:
        super().__init__(f"Reward {reward_id}: {reason}")
        self.reward_id = reward_id
        self.reason = reason


class PaymentExecutorError(YieldVaultError):
    """The external payout executor failed or returned an unusable answer."""
