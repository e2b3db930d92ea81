

# app/ledger/gateway.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import httpx

from app.ledger.base import TransferRequest, TransferResult, truncate_memo
from app.ledger.http import HttpClient, HttpResponse, is_retryable_http
from app.ledger.validate import is_valid_account_id, is_valid_asset
from settings import settings

logger = logging.getLogger("payroll.ledger")

# Receipt / precheck statuses worth another attempt
TRANSIENT_STATUSES = {
    "BUSY",
    "PLATFORM_TRANSACTION_NOT_CREATED",
    "PLATFORM_NOT_ACTIVE",
    "TRANSACTION_EXPIRED",
    "INVALID_TRANSACTION_START",
    "RECEIPT_NOT_FOUND",
    "UNKNOWN",
}

# The gateway derives the transaction id from the idempotency key, so a
# duplicate means an earlier attempt already reached the network.
ACCEPTED_STATUSES = {"SUCCESS", "DUPLICATE_TRANSACTION"}


class LedgerGatewayClient:
    """
    Ledger transfer client backed by the treasury signing gateway.

    The gateway holds the operator key, builds the Hedera transaction and
    returns the receipt status. Contract:
      - submit_transfer(request) -> TransferResult
      - submit_scheduled_transfer(request, required_signers, expiration) -> TransferResult
      - sign_schedule(schedule_id) -> TransferResult
    Every call makes at most one HTTP request and never raises for network or
    ledger errors; those come back as a failed TransferResult.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        operator_account_id: str | None = None,
        http: Optional[HttpClient] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.LEDGER_GATEWAY_URL or "").strip().rstrip("/")
        self.api_key = (api_key if api_key is not None else settings.LEDGER_GATEWAY_API_KEY or "").strip()
        self.operator_account_id = (
            operator_account_id if operator_account_id is not None else settings.HEDERA_OPERATOR_ACCOUNT_ID or ""
        ).strip()
        self.http = http or HttpClient(timeout_s=float(settings.LEDGER_HTTP_TIMEOUT_S))

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    def _transfer_body(self, request: TransferRequest) -> Dict[str, Any]:
        amount = int(request.amount)
        body: Dict[str, Any] = {
            "operator_account_id": self.operator_account_id,
            "transfers": [
                {"account_id": self.operator_account_id, "amount": -amount},
                {"account_id": request.recipient_account_id.strip(), "amount": amount},
            ],
            "memo": truncate_memo(request.memo),
        }
        if request.is_native:
            body["type"] = "CRYPTO_TRANSFER"
        else:
            body["type"] = "TOKEN_TRANSFER"
            body["token_id"] = request.asset.strip()
        return body

    def _precheck(self, request: TransferRequest) -> Optional[TransferResult]:
        if not self.base_url:
            return TransferResult.failed("LEDGER_GATEWAY_URL_NOT_SET", retryable=False)
        if not self.operator_account_id:
            return TransferResult.failed("OPERATOR_ACCOUNT_NOT_SET", retryable=False)
        if not is_valid_account_id(request.recipient_account_id):
            return TransferResult.failed(
                "INVALID_ACCOUNT_ID",
                f"recipient {request.recipient_account_id!r} is not a valid account id",
                retryable=False,
            )
        if not is_valid_asset(request.asset):
            return TransferResult.failed("INVALID_TOKEN_ID", f"asset {request.asset!r}", retryable=False)
        try:
            amount = int(request.amount)
        except (TypeError, ValueError):
            amount = 0
        if amount <= 0 or amount != request.amount:
            return TransferResult.failed("INVALID_AMOUNT", f"amount {request.amount!r}", retryable=False)
        return None

    def submit_transfer(self, request: TransferRequest) -> TransferResult:
        rejected = self._precheck(request)
        if rejected is not None:
            return rejected

        url = f"{self.base_url}/v1/transfers"
        body = self._transfer_body(request)
        result = self._post(url, body, idempotency_key=request.idempotency_key)
        logger.info(
            "transfer submitted recipient=%s asset=%s amount=%s ok=%s status=%s tx=%s",
            request.recipient_account_id,
            request.asset,
            request.amount,
            result.ok,
            result.status,
            result.transaction_id,
        )
        return result

    def submit_scheduled_transfer(
        self,
        request: TransferRequest,
        required_signers: Sequence[str],
        expiration: Optional[datetime] = None,
        *,
        admin_key: Optional[str] = None,
    ) -> TransferResult:
        rejected = self._precheck(request)
        if rejected is not None:
            return rejected

        bad_signers = [s for s in required_signers if not is_valid_account_id(s)]
        if bad_signers:
            return TransferResult.failed(
                "INVALID_SIGNER",
                f"invalid signer account ids: {', '.join(bad_signers)}",
                retryable=False,
            )

        body: Dict[str, Any] = {
            "scheduled_transaction": self._transfer_body(request),
            "required_signers": list(required_signers),
            "memo": truncate_memo(request.memo),
        }
        if expiration is not None:
            body["expiration_time"] = expiration.isoformat()
        if admin_key:
            body["admin_key"] = admin_key

        url = f"{self.base_url}/v1/schedules"
        result = self._post(url, body, idempotency_key=request.idempotency_key, expect_schedule=True)
        logger.info(
            "scheduled transfer created recipient=%s signers=%s ok=%s status=%s schedule=%s",
            request.recipient_account_id,
            len(required_signers),
            result.ok,
            result.status,
            result.schedule_id,
        )
        return result

    def sign_schedule(self, schedule_id: str) -> TransferResult:
        if not self.base_url:
            return TransferResult.failed("LEDGER_GATEWAY_URL_NOT_SET", retryable=False)
        url = f"{self.base_url}/v1/schedules/{schedule_id}/sign"
        return self._post(url, {}, idempotency_key=f"sign-{schedule_id}", expect_schedule=True)

    def close(self) -> None:
        self.http.close()

    def _post(
        self,
        url: str,
        body: Dict[str, Any],
        *,
        idempotency_key: Optional[str],
        expect_schedule: bool = False,
    ) -> TransferResult:
        try:
            resp = self.http.post(url, headers=self._headers(idempotency_key), json_body=body, debug=True)
        except httpx.TimeoutException:
            return TransferResult.failed("GATEWAY_TIMEOUT", f"no response from {url}", retryable=True)
        except httpx.HTTPError as exc:
            return TransferResult.failed("NETWORK_ERROR", str(exc), retryable=True)
        except httpx.InvalidURL as exc:
            return TransferResult.failed("GATEWAY_BAD_URL", str(exc), retryable=False)
        except (TypeError, ValueError) as exc:
            # body the client could not encode
            return TransferResult.failed("GATEWAY_BAD_REQUEST", str(exc), retryable=False)

        return _map_gateway_response(resp, expect_schedule=expect_schedule)


def _map_gateway_response(resp: HttpResponse, *, expect_schedule: bool = False) -> TransferResult:
    data = resp.json if isinstance(resp.json, dict) else {}
    status = str(data.get("status") or "").strip().upper()
    message = str(data.get("message") or data.get("error") or "")
    tx_id = data.get("transaction_id") or None
    schedule_id = data.get("schedule_id") or None

    if resp.status_code in (200, 201, 202):
        if status in ACCEPTED_STATUSES:
            if expect_schedule and not schedule_id:
                return TransferResult.failed("SCHEDULE_MISSING_ID", message, retryable=False, status=status)
            if not expect_schedule and not tx_id:
                return TransferResult.failed("TRANSACTION_MISSING_ID", message, retryable=False, status=status)
            return TransferResult.accepted(transaction_id=tx_id, status=status, schedule_id=schedule_id)

        if not status:
            return TransferResult.failed("GATEWAY_BAD_RESPONSE", resp.text[:200], retryable=True, status="UNKNOWN")

        return TransferResult.failed(status, message, retryable=status in TRANSIENT_STATUSES, status=status)

    code = status or f"HTTP_{resp.status_code}"
    return TransferResult.failed(
        code,
        message or f"HTTP {resp.status_code}",
        retryable=is_retryable_http(resp.status_code) or status in TRANSIENT_STATUSES,
        status=status or "FAILED",
    )
