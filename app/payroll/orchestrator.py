

# app/payroll/orchestrator.py
from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, TypeVar

from app.ledger.validate import is_valid_account_id
from app.payroll.context import ExecutionContext
from app.payroll.errors import RunAlreadyActive, RunNotFound, RunStopped
from app.payroll.model import ArtifactRefs, PayoutExecution, PayoutInstruction, RunExecution
from app.payroll.retry import payout_id_for
from app.payroll.runner import PayoutAttemptRunner
from services.metrics import increment_payroll_run
from services.observability import run_scope

logger = logging.getLogger("payroll.executor")

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class PayrollExecutor:
    """
    Drives one payroll run from PENDING to COMPLETED or FAILED.

    Payouts are grouped into fixed-size batches. Each batch runs concurrently
    and the next batch starts only after every payout of the current one has
    settled (CONFIRMED, FAILED or SUBMITTED-unconfirmed). The RunExecution is
    only touched from the calling thread, after a batch settles.
    """

    def __init__(self, ctx: ExecutionContext, run_id: str):
        self.ctx = ctx
        self.run_id = run_id
        self.run = RunExecution(run_id=run_id, started_at=_now())
        self.runner = PayoutAttemptRunner(ctx, run_id)
        self._stop = threading.Event()

    def request_stop(self) -> None:
        """Ask the run to stop before its next batch; in-flight payouts finish."""
        self._stop.set()

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------

    def execute(self, instructions: Optional[Iterable[PayoutInstruction]] = None) -> RunExecution:
        self.ctx.acquire_run(self.run_id)
        try:
            with run_scope(self.run_id):
                return self._execute(instructions)
        finally:
            self.ctx.release_run(self.run_id)

    def _execute(self, instructions: Optional[Iterable[PayoutInstruction]]) -> RunExecution:
        run = RunExecution(run_id=self.run_id, started_at=_now())
        self.run = run

        if not self.ctx.store.claim_run(self.run_id):
            raise RunAlreadyActive(self.run_id)

        try:
            run.status = "EXECUTING"
            if instructions is None:
                instructions = self.ctx.store.load_instructions(self.run_id)

            eligible = [i for i in instructions if i.eligible]

            # payouts an earlier execution took past PENDING keep their result
            settled = self._settled_payouts()
            fresh: list[PayoutInstruction] = []
            for instruction in eligible:
                contributor_id = (instruction.contributor_id or "").strip()
                if contributor_id not in settled:
                    fresh.append(instruction)
                elif run.find_payout(contributor_id) is None:
                    self._fold(run, settled[contributor_id])
                else:
                    run.skipped[contributor_id] = "duplicate payout instruction"

            validated = self._validate_accounts(fresh)
            run.total_payouts = len(run.payouts) + len(validated)
            self.ctx.store.save_run(run)

            batches = create_batches(validated, self.ctx.batch_size)
            logger.info(
                "run %s: %s eligible, %s already settled, %s validated, %s skipped, %s batches",
                self.run_id,
                len(eligible),
                len(run.payouts),
                len(validated),
                len(run.skipped),
                len(batches),
            )

            for index, batch in enumerate(batches):
                if self._stop.is_set():
                    raise RunStopped("stopped by operator")

                logger.info("Processing batch %s/%s (%s payouts)", index + 1, len(batches), len(batch))
                for result in self._run_batch([(i, None) for i in batch]):
                    self._fold(run, result)
                self.ctx.store.save_run(run)

                if index < len(batches) - 1:
                    self.ctx.sleep(self.ctx.batch_delay_s)

            run.status = "COMPLETED"
            run.finished_at = _now()
            run.artifacts = self._generate_artifacts(run)
            self.ctx.store.save_run(run)
            increment_payroll_run(run.status)

            logger.info(
                "run %s completed: total=%s successful=%s failed=%s submitted_unconfirmed=%s",
                self.run_id,
                run.total_payouts,
                run.successful_payouts,
                run.failed_payouts,
                run.submitted_unconfirmed,
            )
            return run

        except Exception as exc:
            logger.exception("run %s aborted", self.run_id)
            run.status = "FAILED"
            run.error = str(exc) or type(exc).__name__
            run.finished_at = _now()
            increment_payroll_run(run.status)
            try:
                self.ctx.store.save_run(run)
            except Exception:
                logger.exception("run %s: could not persist FAILED status", self.run_id)
            return run

    # ------------------------------------------------------------------
    # retry
    # ------------------------------------------------------------------

    def retry_failed_payouts(self, run_id: Optional[str] = None) -> RunExecution:
        run_id = run_id or self.run_id
        if run_id != self.run_id:
            raise ValueError(f"executor for run {self.run_id} cannot retry run {run_id}")

        self.ctx.acquire_run(run_id)
        try:
            with run_scope(run_id):
                return self._retry_failed()
        finally:
            self.ctx.release_run(run_id)

    def _retry_failed(self) -> RunExecution:
        run = self.run
        if not run.payouts:
            loaded = self.ctx.store.load_run(self.run_id)
            if loaded is None:
                raise RunNotFound(self.run_id)
            run = self.run = loaded

        failed = [p for p in run.payouts if p.status == "FAILED"]
        if not failed:
            return run

        if not self.ctx.store.claim_run(self.run_id):
            raise RunAlreadyActive(self.run_id)

        # claim_run marks the row EXECUTING; the final save puts this status back
        try:
            logger.info("Retrying %s failed payouts", len(failed))

            work: list[tuple[PayoutInstruction, PayoutExecution]] = []
            for payout in failed:
                try:
                    instruction = self.ctx.store.load_instruction(self.run_id, payout.contributor_id)
                except Exception:
                    logger.exception("could not reload payout for contributor %s", payout.contributor_id)
                    continue
                if instruction is None:
                    logger.error("Payout record not found for contributor %s", payout.contributor_id)
                    continue
                work.append((instruction, payout))

            batches = create_batches(work, self.ctx.batch_size)
            for index, batch in enumerate(batches):
                for result in self._run_batch(batch):
                    at = next(i for i, p in enumerate(run.payouts) if p.contributor_id == result.contributor_id)
                    run.payouts[at] = result
                    if result.status == "CONFIRMED":
                        run.successful_payouts += 1
                        run.failed_payouts -= 1
                    elif result.status == "SUBMITTED":
                        run.failed_payouts -= 1

                if index < len(batches) - 1:
                    self.ctx.sleep(self.ctx.batch_delay_s)
        finally:
            self.ctx.store.save_run(run)
        return run

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _run_batch(self, batch: Sequence[tuple[PayoutInstruction, Optional[PayoutExecution]]]) -> list[PayoutExecution]:
        futures: list[Future] = []
        with ThreadPoolExecutor(max_workers=max(1, len(batch)), thread_name_prefix="payout") as pool:
            for instruction, previous in batch:
                # carry the run id context var into the worker thread
                ctx = contextvars.copy_context()
                futures.append(pool.submit(ctx.run, self.runner.run, instruction, previous))
            wait(futures)

        results: list[PayoutExecution] = []
        for (instruction, previous), future in zip(batch, futures):
            try:
                results.append(future.result())
            except Exception as exc:
                logger.exception("payout for %s crashed", instruction.contributor_id)
                results.append(
                    PayoutExecution(
                        payout_id=payout_id_for(self.run_id, instruction.contributor_id),
                        contributor_id=instruction.contributor_id,
                        status="FAILED",
                        attempts=previous.attempts if previous else 0,
                        last_error=str(exc) or "Unknown error",
                        amount=instruction.amount,
                        asset=instruction.asset,
                    )
                )
        return results

    def _settled_payouts(self) -> dict[str, PayoutExecution]:
        previous = self.ctx.store.load_run(self.run_id)
        if previous is None:
            return {}
        return {p.contributor_id: p for p in previous.payouts if p.status != "PENDING"}

    @staticmethod
    def _fold(run: RunExecution, result: PayoutExecution) -> None:
        run.payouts.append(result)
        if result.status == "CONFIRMED":
            run.successful_payouts += 1
        elif result.status == "FAILED":
            run.failed_payouts += 1

    def _validate_accounts(self, instructions: Sequence[PayoutInstruction]) -> list[PayoutInstruction]:
        validated: list[PayoutInstruction] = []
        seen: set[str] = set()

        for instruction in instructions:
            contributor_id = (instruction.contributor_id or "").strip()
            if not contributor_id:
                logger.warning("Skipping payout without contributor id (%s)", instruction.github_login)
                self.run.skipped[instruction.github_login or "<unknown>"] = "missing contributor id"
                continue
            if contributor_id in seen:
                logger.warning("Skipping duplicate payout for contributor %s", contributor_id)
                self.run.skipped[contributor_id] = "duplicate payout instruction"
                continue

            recipient = (instruction.recipient_account_id or "").strip()
            if not recipient:
                try:
                    recipient = (self.ctx.store.get_contributor_account(contributor_id) or "").strip()
                except Exception:
                    logger.exception("Error validating contributor %s", contributor_id)
                    self.run.skipped[contributor_id] = "contributor lookup failed"
                    continue

            if not recipient:
                logger.warning("Contributor has no ledger account: %s", contributor_id)
                self.run.skipped[contributor_id] = "missing ledger account"
                continue
            if not is_valid_account_id(recipient):
                logger.warning("Invalid Hedera account ID for %s: %s", contributor_id, recipient)
                self.run.skipped[contributor_id] = f"invalid ledger account {recipient}"
                continue

            seen.add(contributor_id)
            validated.append(replace(instruction, recipient_account_id=recipient))

        return validated

    def _generate_artifacts(self, run: RunExecution) -> ArtifactRefs:
        if self.ctx.publisher is None:
            return ArtifactRefs()
        try:
            return self.ctx.publisher.publish(run)
        except Exception:
            logger.exception("Error generating artifacts for run %s", self.run_id)
            return ArtifactRefs()
