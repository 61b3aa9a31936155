"""
yieldvault.services.holdings_source — Snapshot Holdings Client
===============================================================

Fetches ``wallet → quantity`` for the monthly snapshot from an indexer that
answers ``GET {base_url}/holdings?chain=<chain>`` with::

    {"holdings": [{"wallet": "r...", "quantity": "12", "user_handle": "alice"}, ...]}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Holding:
    wallet: str
    quantity: Decimal
    user_handle: str | None = None


class HoldingsSource:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport or httpx.HTTPTransport(retries=1),
        )

    def fetch(self, chain: str) -> list[Holding]:
        """Return the current holdings for *chain*.

        Malformed rows are skipped with a warning; transport and HTTP errors
        propagate as :class:`httpx.HTTPError`.
        """
        resp = self._client.get(f"{self.base_url}/holdings", params={"chain": chain})
        resp.raise_for_status()

        holdings: list[Holding] = []
        for row in resp.json().get("holdings", []):
            try:
                holdings.append(Holding(
                    wallet=str(row["wallet"]).strip(),
                    quantity=Decimal(str(row["quantity"])),
                    user_handle=row.get("user_handle"),
                ))
            except (KeyError, TypeError, InvalidOperation):
                logger.warning("Skipping malformed holdings row: %r", row)
        logger.info("Fetched %d holdings rows for %s", len(holdings), chain)
        return holdings

    def close(self) -> None:
        self._client.close()
