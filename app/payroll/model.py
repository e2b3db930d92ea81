

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Any, Literal
from datetime import datetime

PayoutStatus = Literal["PENDING", "SUBMITTED", "CONFIRMED", "FAILED"]
RunStatus = Literal["PENDING", "EXECUTING", "COMPLETED", "FAILED"]


@dataclass(frozen=True)
class PayoutInstruction:
    contributor_id: str
    amount: int  # smallest unit of the asset
    asset: str
    eligible: bool = True
    recipient_account_id: Optional[str] = None
    asset_decimals: int = 8
    github_login: Optional[str] = None
    usd_amount: Optional[float] = None
    share_ratio: Optional[float] = None


@dataclass
class PayoutExecution:
    payout_id: str
    contributor_id: str
    status: PayoutStatus = "PENDING"
    attempts: int = 0
    last_error: Optional[str] = None
    transaction_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    recipient_account_id: Optional[str] = None
    amount: Optional[int] = None
    asset: Optional[str] = None
    idempotency_key: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payout_id": self.payout_id,
            "contributor_id": self.contributor_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "transaction_id": self.transaction_id,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "recipient_account_id": self.recipient_account_id,
            "amount": self.amount,
            "asset": self.asset,
        }


@dataclass
class ArtifactRefs:
    json_cid: Optional[str] = None
    csv_cid: Optional[str] = None
    pdf_cid: Optional[str] = None
    manifest_cid: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "json_cid": self.json_cid,
            "csv_cid": self.csv_cid,
            "pdf_cid": self.pdf_cid,
            "manifest_cid": self.manifest_cid,
        }


@dataclass
class RunExecution:
    run_id: str
    started_at: datetime
    status: RunStatus = "PENDING"
    total_payouts: int = 0
    successful_payouts: int = 0
    failed_payouts: int = 0
    payouts: list[PayoutExecution] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    artifacts: ArtifactRefs = field(default_factory=ArtifactRefs)

    @property
    def submitted_unconfirmed(self) -> int:
        return sum(1 for p in self.payouts if p.status == "SUBMITTED")

    def find_payout(self, contributor_id: str) -> Optional[PayoutExecution]:
        for p in self.payouts:
            if p.contributor_id == contributor_id:
                return p
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "total_payouts": self.total_payouts,
            "successful_payouts": self.successful_payouts,
            "failed_payouts": self.failed_payouts,
            "submitted_unconfirmed": self.submitted_unconfirmed,
            "payouts": [p.to_dict() for p in self.payouts],
            "skipped": dict(self.skipped),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "artifacts": self.artifacts.to_dict(),
        }
