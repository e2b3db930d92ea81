from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass


def payout_id_for(run_id: str, contributor_id: str) -> str:
    return f"payout_{run_id}_{contributor_id}"


def idempotency_key_for(run_id: str, contributor_id: str) -> str:
    """
    Stable per (run_id, contributor_id) and identical across every attempt of
    the same payout, so the gateway can collapse a resubmission that follows a
    timeout after the network already accepted the transfer.
    """
    raw = json.dumps(
        {"run_id": str(run_id), "contributor_id": str(contributor_id)},
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"payroll-{digest[:48]}"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay_s: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.retry_delay_s < 0:
            raise ValueError("retry_delay_s must be >= 0")

    def delay_before_next(self, attempt: int) -> float:
        # linear: wait retry_delay * k after the k-th failed attempt
        return self.retry_delay_s * attempt

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_retries
