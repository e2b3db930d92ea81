

# app/payroll/context.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from app.ledger.base import FinalityVerifier, LedgerClient
from app.payroll.errors import RunAlreadyActive
from app.payroll.model import ArtifactRefs, PayoutExecution, PayoutInstruction, RunExecution
from app.payroll.retry import RetryPolicy


class PayrollStore(Protocol):
    def claim_run(self, run_id: str) -> bool: ...
    def save_run(self, run: RunExecution) -> None: ...
    def save_payout(self, run_id: str, payout: PayoutExecution) -> None: ...
    def load_instructions(self, run_id: str) -> list[PayoutInstruction]: ...
    def load_instruction(self, run_id: str, contributor_id: str) -> Optional[PayoutInstruction]: ...
    def get_contributor_account(self, contributor_id: str) -> Optional[str]: ...
    def list_submitted(self, run_id: Optional[str] = None) -> list[tuple[str, PayoutExecution]]: ...
    def load_run(self, run_id: str) -> Optional[RunExecution]: ...


class ArtifactPublisher(Protocol):
    def publish(self, run: RunExecution) -> ArtifactRefs: ...


@dataclass
class ExecutionContext:
    """
    Everything a payroll execution needs, built once per process and passed
    explicitly to executors and runners.
    """

    ledger: LedgerClient
    verifier: FinalityVerifier
    store: PayrollStore
    publisher: Optional[ArtifactPublisher] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    batch_size: int = 10
    batch_delay_s: float = 2.0
    poll_interval_s: float = 5.0
    max_poll_attempts: int = 12
    environment: str = "testnet"
    sleep: Callable[[float], None] = time.sleep

    _active_runs: set[str] = field(default_factory=set, init=False, repr=False)
    _active_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def acquire_run(self, run_id: str) -> None:
        with self._active_lock:
            if run_id in self._active_runs:
                raise RunAlreadyActive(run_id)
            self._active_runs.add(run_id)

    def release_run(self, run_id: str) -> None:
        with self._active_lock:
            self._active_runs.discard(run_id)

    def is_active(self, run_id: str) -> bool:
        with self._active_lock:
            return run_id in self._active_runs


def build_context(sleep: Callable[[float], None] = time.sleep) -> ExecutionContext:
    from app.artifacts.lighthouse import LighthousePublisher
    from app.ledger.gateway import LedgerGatewayClient
    from app.ledger.mirror import MirrorNodeVerifier
    from app.payroll.repository import PostgresPayrollStore
    from settings import settings

    return ExecutionContext(
        ledger=LedgerGatewayClient(),
        verifier=MirrorNodeVerifier(sleep=sleep),
        store=PostgresPayrollStore(),
        publisher=LighthousePublisher(),
        retry_policy=RetryPolicy(
            max_retries=settings.PAYROLL_MAX_RETRIES,
            retry_delay_s=settings.PAYROLL_RETRY_DELAY_S,
        ),
        batch_size=settings.PAYROLL_BATCH_SIZE,
        batch_delay_s=settings.PAYROLL_BATCH_DELAY_S,
        poll_interval_s=settings.FINALITY_POLL_INTERVAL_S,
        max_poll_attempts=settings.FINALITY_MAX_ATTEMPTS,
        environment=settings.HEDERA_NETWORK,
        sleep=sleep,
    )
