

# app/ledger/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

NATIVE_ASSET = "HBAR"

# Hedera rejects memos longer than 100 bytes
MAX_MEMO_BYTES = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransferRequest:
    recipient_account_id: str
    amount: int  # smallest unit (tinybars / token base units)
    asset: str  # "HBAR" or token id "0.0.N"
    idempotency_key: str
    memo: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.asset.strip().upper() == NATIVE_ASSET


@dataclass(frozen=True)
class TransferError:
    code: str
    message: str
    retryable: bool


@dataclass(frozen=True)
class TransferResult:
    ok: bool
    status: str
    transaction_id: Optional[str] = None
    schedule_id: Optional[str] = None
    error: Optional[TransferError] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return f"{self.error.code}: {self.error.message}" if self.error.message else self.error.code

    @classmethod
    def accepted(cls, *, transaction_id: Optional[str], status: str = "SUCCESS", schedule_id: Optional[str] = None) -> "TransferResult":
        return cls(ok=True, status=status, transaction_id=transaction_id, schedule_id=schedule_id)

    @classmethod
    def failed(cls, code: str, message: str = "", *, retryable: bool, status: str = "FAILED") -> "TransferResult":
        return cls(ok=False, status=status, error=TransferError(code=code, message=message, retryable=retryable))


class LedgerClient(Protocol):
    def submit_transfer(self, request: TransferRequest) -> TransferResult: ...

    def submit_scheduled_transfer(
        self,
        request: TransferRequest,
        required_signers: Sequence[str],
        expiration: Optional[datetime] = None,
    ) -> TransferResult: ...


class FinalityVerifier(Protocol):
    def is_finalized(self, transaction_id: str) -> bool: ...

    def await_finalization(self, transaction_id: str, poll_interval: float, max_attempts: int) -> bool: ...


def truncate_memo(memo: Optional[str]) -> Optional[str]:
    if not memo:
        return memo
    raw = memo.encode("utf-8")
    if len(raw) <= MAX_MEMO_BYTES:
        return memo
    return raw[:MAX_MEMO_BYTES].decode("utf-8", errors="ignore")
