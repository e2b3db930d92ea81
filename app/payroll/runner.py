

# app/payroll/runner.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from app.ledger.base import TransferRequest
from app.ledger.validate import is_valid_account_id
from app.payroll.context import ExecutionContext
from app.payroll.model import PayoutExecution, PayoutInstruction
from app.payroll.retry import idempotency_key_for, payout_id_for
from app.payroll.state_machine import assert_submitted_invariant, assert_transition
from services.metrics import increment_payout_attempt

logger = logging.getLogger("payroll.runner")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PayoutAttemptRunner:
    """
    Executes one payout end to end: resolve recipient, submit with bounded
    retry, then wait for finality.

    Retries only ever happen before the ledger accepts a transfer. Once a
    transaction id exists the payout is SUBMITTED or CONFIRMED and is never
    submitted again.
    """

    def __init__(self, ctx: ExecutionContext, run_id: str):
        self.ctx = ctx
        self.run_id = run_id

    def memo(self) -> str:
        return f"Payroll - Run {self.run_id}"

    def run(self, instruction: PayoutInstruction, previous: Optional[PayoutExecution] = None) -> PayoutExecution:
        contributor_id = instruction.contributor_id
        if previous is not None:
            payout = replace(
                previous,
                amount=instruction.amount,
                asset=instruction.asset,
                transaction_id=None,
                submitted_at=None,
                confirmed_at=None,
            )
            assert_transition(payout.status, "PENDING")
            payout.status = "PENDING"
        else:
            payout = PayoutExecution(
                payout_id=payout_id_for(self.run_id, contributor_id),
                contributor_id=contributor_id,
                amount=instruction.amount,
                asset=instruction.asset,
            )
        payout.idempotency_key = idempotency_key_for(self.run_id, contributor_id)

        try:
            return self._attempt_loop(instruction, payout)
        except Exception as exc:
            logger.exception("payout=%s unexpected error", payout.payout_id)
            return self._settle_after_error(payout, f"{type(exc).__name__}: {exc}")

    def _attempt_loop(self, instruction: PayoutInstruction, payout: PayoutExecution) -> PayoutExecution:
        policy = self.ctx.retry_policy
        base_attempts = payout.attempts

        for attempt in range(1, policy.max_retries + 1):
            payout.attempts = base_attempts + attempt

            recipient = self._resolve_recipient(instruction)
            if not is_valid_account_id(recipient):
                # Data error: no network call, no retry
                error = (
                    "Contributor has no ledger account"
                    if not recipient
                    else f"Invalid recipient account id: {recipient}"
                )
                increment_payout_attempt(instruction.asset, "invalid_recipient")
                return self._transition(payout, "FAILED", last_error=error)
            payout.recipient_account_id = recipient

            request = TransferRequest(
                recipient_account_id=recipient,
                amount=instruction.amount,
                asset=instruction.asset,
                memo=self.memo(),
                idempotency_key=payout.idempotency_key,
            )
            result = self.ctx.ledger.submit_transfer(request)

            if result.ok:
                increment_payout_attempt(instruction.asset, "submitted")
                self._transition(
                    payout,
                    "SUBMITTED",
                    transaction_id=result.transaction_id,
                    submitted_at=_now(),
                    last_error=None,
                )
                confirmed = self.ctx.verifier.await_finalization(
                    result.transaction_id,
                    self.ctx.poll_interval_s,
                    self.ctx.max_poll_attempts,
                )
                if confirmed:
                    return self._transition(payout, "CONFIRMED", confirmed_at=_now())
                logger.warning(
                    "payout=%s tx=%s submitted but not finalized; left for reconciliation",
                    payout.payout_id,
                    result.transaction_id,
                )
                return payout

            error = result.error_message or "Transaction failed"
            payout.last_error = error
            if policy.is_last(attempt) or not result.retryable:
                increment_payout_attempt(instruction.asset, "failed")
                logger.warning(
                    "payout=%s attempt=%s -> FAILED (%s)",
                    payout.payout_id,
                    attempt,
                    error,
                )
                return self._transition(payout, "FAILED", last_error=error)

            increment_payout_attempt(instruction.asset, "retry")
            delay = policy.delay_before_next(attempt)
            logger.info(
                "payout=%s attempt=%s failed (%s); retrying in %.1fs",
                payout.payout_id,
                attempt,
                error,
                delay,
            )
            self.ctx.sleep(delay)

        return self._transition(payout, "FAILED", last_error=payout.last_error or "max retries exceeded")

    def _resolve_recipient(self, instruction: PayoutInstruction) -> Optional[str]:
        recipient = (instruction.recipient_account_id or "").strip()
        if recipient:
            return recipient
        account = self.ctx.store.get_contributor_account(instruction.contributor_id)
        return (account or "").strip() or None

    def _transition(self, payout: PayoutExecution, new_status: str, **changes) -> PayoutExecution:
        assert_transition(payout.status, new_status)
        for key, value in changes.items():
            setattr(payout, key, value)
        assert_submitted_invariant(new_status, payout.transaction_id)
        payout.status = new_status
        self.ctx.store.save_payout(self.run_id, payout)
        return payout

    def _settle_after_error(self, payout: PayoutExecution, error: str) -> PayoutExecution:
        payout.last_error = error
        if payout.transaction_id:
            # Accepted by the ledger: keep SUBMITTED so nothing resubmits it
            if payout.status == "PENDING":
                payout.status = "SUBMITTED"
        elif payout.status != "FAILED":
            payout.status = "FAILED"
        try:
            self.ctx.store.save_payout(self.run_id, payout)
        except Exception:
            logger.exception("payout=%s could not persist status %s", payout.payout_id, payout.status)
        return payout
