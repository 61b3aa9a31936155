"""
yieldvault.constants — Chain Registry Defaults
================================================

Every chain the engine knows about, the address family its payout wallet
belongs to and the native asset accrual is denominated in.  The seeder
creates one inactive ``chain_rate_configs`` row per entry; admins then set
an APY and a payout wallet before a chain can accrue.
"""

from __future__ import annotations

import enum
from decimal import Decimal


class AddressFamily(enum.StrEnum):
    EVM = "evm"
    XRPL = "xrpl"
    SOLANA = "solana"
    BITCOIN = "bitcoin"


# chain → (address family, native asset)
SUPPORTED_CHAINS: dict[str, tuple[AddressFamily, str]] = {
    "ethereum": (AddressFamily.EVM, "ETH"),
    "bsc": (AddressFamily.EVM, "BNB"),
    "polygon": (AddressFamily.EVM, "POL"),
    "arbitrum": (AddressFamily.EVM, "ETH"),
    "optimism": (AddressFamily.EVM, "ETH"),
    "base": (AddressFamily.EVM, "ETH"),
    "avalanche": (AddressFamily.EVM, "AVAX"),
    "fantom": (AddressFamily.EVM, "FTM"),
    "cronos": (AddressFamily.EVM, "CRO"),
    "gnosis": (AddressFamily.EVM, "xDAI"),
    "celo": (AddressFamily.EVM, "CELO"),
    "moonbeam": (AddressFamily.EVM, "GLMR"),
    "zksync": (AddressFamily.EVM, "ETH"),
    "linea": (AddressFamily.EVM, "ETH"),
    "xrpl": (AddressFamily.XRPL, "XRP"),
    "solana": (AddressFamily.SOLANA, "SOL"),
    "bitcoin": (AddressFamily.BITCOIN, "BTC"),
}

DEFAULT_MIN_DEPOSIT = Decimal("0")
MAX_APY = Decimal("100")

# Memo attached to a pending deposit so the verifier can match the transfer.
DEPOSIT_MEMO_TEMPLATE = "VAULT-{handle}-{contribution_id}"

ACCRUAL_LEASE_NAME = "accrual-scheduler"
