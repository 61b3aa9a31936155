"""
yieldvault.engine.addresses — Payout Address Validation
========================================================

Each supported chain belongs to exactly one address family.  A family is a
validator function; the chain → family lookup in
:data:`yieldvault.constants.SUPPORTED_CHAINS` selects which one runs.  A
chain missing from that table is its own, explicitly rejected case.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from yieldvault.constants import SUPPORTED_CHAINS, AddressFamily

_BASE58 = "1-9A-HJ-NP-Za-km-z"

_EVM_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_XRPL_RE = re.compile(rf"^r[{_BASE58}]{{24,34}}$")
_SOLANA_RE = re.compile(rf"^[{_BASE58}]{{32,44}}$")
_BTC_LEGACY_RE = re.compile(rf"^[13][{_BASE58}]{{25,33}}$")
_BTC_BECH32_RE = re.compile(r"^bc1[02-9ac-hj-np-z]{39,59}$")


@dataclass(frozen=True, slots=True)
class AddressCheck:
    """Outcome of validating one payout address."""

    valid: bool
    chain: str
    family: AddressFamily | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Family validators — return None when valid, else a human-readable reason
# ---------------------------------------------------------------------------
def _check_evm(chain: str, address: str) -> str | None:
    if _EVM_RE.match(address):
        return None
    return (
        f"Invalid EVM address format for {chain}. "
        "Must be 0x followed by 40 hex characters."
    )


def _check_xrpl(chain: str, address: str) -> str | None:
    if _XRPL_RE.match(address):
        return None
    return "Invalid XRPL address format. Must start with 'r' and be 25-35 characters."


def _check_solana(chain: str, address: str) -> str | None:
    if _SOLANA_RE.match(address):
        return None
    return "Invalid Solana address format. Must be 32-44 base58 characters."


def _check_bitcoin(chain: str, address: str) -> str | None:
    if address[:3].lower() == "bc1":
        # bech32 is single-case; uppercase is legal, mixed case is not.
        if address not in (address.lower(), address.upper()):
            return "Invalid Bitcoin bech32 address: mixed case is not allowed."
        if _BTC_BECH32_RE.match(address.lower()):
            return None
        return "Invalid Bitcoin bech32 address. Must be bc1 followed by 39-59 characters."
    if _BTC_LEGACY_RE.match(address):
        return None
    return (
        "Invalid Bitcoin address format. Must be a legacy (1...), "
        "P2SH (3...) or bech32 (bc1...) address."
    )


_VALIDATORS: dict[AddressFamily, Callable[[str, str], str | None]] = {
    AddressFamily.EVM: _check_evm,
    AddressFamily.XRPL: _check_xrpl,
    AddressFamily.SOLANA: _check_solana,
    AddressFamily.BITCOIN: _check_bitcoin,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def family_for_chain(chain: str) -> AddressFamily | None:
    entry = SUPPORTED_CHAINS.get(chain.strip().lower())
    return entry[0] if entry else None


def validate_payout_address(chain: str, address: str | None) -> AddressCheck:
    """Validate *address* against the address family of *chain*.

    Leading/trailing whitespace is ignored.  Never raises.
    """
    chain_key = (chain or "").strip().lower()
    family = family_for_chain(chain_key)
    if family is None:
        return AddressCheck(
            valid=False,
            chain=chain_key,
            reason=f"Unknown chain type: {chain}. Cannot validate address format.",
        )

    candidate = (address or "").strip()
    if not candidate:
        return AddressCheck(valid=False, chain=chain_key, family=family,
                            reason="Address is required.")

    reason = _VALIDATORS[family](chain_key, candidate)
    return AddressCheck(valid=reason is None, chain=chain_key, family=family, reason=reason)
