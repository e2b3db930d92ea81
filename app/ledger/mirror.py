

# app/ledger/mirror.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from app.ledger.http import HttpClient
from app.ledger.validate import to_mirror_transaction_id
from services.metrics import increment_finality_poll
from settings import settings

logger = logging.getLogger("payroll.mirror")


@dataclass(frozen=True)
class MirrorLookup:
    found: bool
    result: Optional[str] = None
    consensus_timestamp: Optional[str] = None
    charged_tx_fee: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.found and self.result == "SUCCESS"

    @property
    def failed(self) -> bool:
        # An explicit non-success result is final; absence is not
        return self.found and bool(self.result) and self.result != "SUCCESS"


class MirrorNodeVerifier:
    """
    Finality checks against the Hedera mirror node REST API.

    The mirror node lags consensus by a few seconds, so a 404 or an empty
    transaction list only means "not visible yet".
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        http: Optional[HttpClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.mirror_node_url()).strip().rstrip("/")
        self.http = http or HttpClient(timeout_s=float(settings.MIRROR_HTTP_TIMEOUT_S))
        self.sleep = sleep

    def lookup(self, transaction_id: str) -> MirrorLookup:
        try:
            mirror_id = to_mirror_transaction_id(transaction_id)
        except ValueError as exc:
            return MirrorLookup(found=False, error=str(exc))

        url = f"{self.base_url}/api/v1/transactions/{mirror_id}"
        try:
            resp = self.http.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            logger.warning("mirror lookup error tx=%s err=%s", transaction_id, exc)
            return MirrorLookup(found=False, error=f"MIRROR_NETWORK_ERROR: {exc}")

        if resp.status_code == 404:
            return MirrorLookup(found=False)

        if resp.status_code != 200:
            logger.warning("mirror lookup tx=%s http_status=%s", transaction_id, resp.status_code)
            return MirrorLookup(found=False, error=f"HTTP {resp.status_code}")

        data = resp.json if isinstance(resp.json, dict) else {}
        transactions = data.get("transactions") or []
        if not transactions:
            return MirrorLookup(found=False)

        tx = transactions[0]
        fee = tx.get("charged_tx_fee")
        return MirrorLookup(
            found=True,
            result=str(tx.get("result") or "").upper() or None,
            consensus_timestamp=tx.get("consensus_timestamp"),
            charged_tx_fee=int(fee) if fee is not None else None,
        )

    def is_finalized(self, transaction_id: str) -> bool:
        return self.lookup(transaction_id).succeeded

    def await_finalization(
        self,
        transaction_id: str,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ) -> bool:
        interval = settings.FINALITY_POLL_INTERVAL_S if poll_interval is None else poll_interval
        attempts = settings.FINALITY_MAX_ATTEMPTS if max_attempts is None else max_attempts

        for attempt in range(1, attempts + 1):
            # The first wait lets the mirror node ingest the record
            self.sleep(interval)
            if self.is_finalized(transaction_id):
                increment_finality_poll("confirmed")
                logger.info("transaction finalized tx=%s polls=%s", transaction_id, attempt)
                return True
            increment_finality_poll("pending")

        increment_finality_poll("timeout")
        logger.warning(
            "transaction not finalized within %s polls tx=%s",
            attempts,
            transaction_id,
        )
        return False
