"""
yieldvault.services.payment_executor — External Payout Executor Client
=======================================================================

The engine never broadcasts transactions itself.  A self-service claim asks
the executor to send the funds and records the transaction reference it
returns.  Calls are synchronous because they run inside the claim's DB
transaction, and sync FastAPI routes already run on a worker thread.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal

import httpx

from yieldvault.errors import PaymentExecutorError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PayoutRequest:
    reward_id: int
    user_handle: str
    chain: str
    amount: Decimal
    destination: str | None


class PaymentExecutor:
    """Thin httpx client for ``POST {base_url}/payouts``.

    The executor answers ``{"tx_ref": "<hash>"}`` on success.  Anything else
    (transport error, non-2xx, missing reference) raises
    :class:`PaymentExecutorError`.
    """

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

    def pay(self, request: PayoutRequest) -> str:
        payload = asdict(request)
        payload["amount"] = str(request.amount)
        try:
            resp = self._client.post(f"{self.base_url}/payouts", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Payout request for reward %s failed: %s", request.reward_id, exc)
            raise PaymentExecutorError(f"Payment executor unreachable: {exc}") from exc

        if resp.status_code >= 300:
            logger.warning(
                "Payout for reward %s rejected (HTTP %s)", request.reward_id, resp.status_code
            )
            raise PaymentExecutorError(f"Payment executor returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise PaymentExecutorError("Payment executor returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise PaymentExecutorError("Payment executor returned a non-object JSON body")
        tx_ref = body.get("tx_ref")
        if not tx_ref:
            raise PaymentExecutorError("Payment executor returned no transaction reference")

        logger.info("Payout sent for reward %s → %s", request.reward_id, tx_ref)
        return str(tx_ref)

    def close(self) -> None:
        self._client.close()
