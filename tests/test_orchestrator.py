from __future__ import annotations

import pytest

from app.ledger.base import TransferResult
from app.payroll.errors import RunAlreadyActive, RunNotFound
from app.payroll.orchestrator import PayrollExecutor, create_batches
from services.metrics import get_counter
from tests.conftest import RUN_ID, account_for, instr, make_ctx
from tests.fakes import FakeLedger, FakePublisher, InMemoryStore, RecordingSleep, ScriptedVerifier


def _rejected() -> TransferResult:
    return TransferResult.failed("INSUFFICIENT_PAYER_BALANCE", "treasury empty", retryable=False)


def _team(n: int):
    return [instr(f"c{i}", account_for(i)) for i in range(n)]


def test_create_batches():
    assert create_batches(list(range(12)), 10) == [list(range(10)), [10, 11]]
    assert create_batches([], 10) == []
    with pytest.raises(ValueError):
        create_batches([1], 0)


def test_twelve_payouts_run_in_two_batches_with_barrier(ctx, ledger, sleep, events):
    run = PayrollExecutor(ctx, RUN_ID).execute(_team(12))

    assert run.status == "COMPLETED"
    assert run.total_payouts == 12
    assert run.successful_payouts == 12
    assert run.failed_payouts == 0
    assert len(ledger.calls) == 12
    assert sleep.waits == [2.0]

    # every payout of batch 1 settles before the delay, batch 2 submits after it
    delay_at = events.index_of("sleep", "2.0")
    before = events.items[:delay_at]
    after = events.items[delay_at + 1:]
    assert sum(1 for kind, _ in before if kind == "settled") == 10
    assert {v for kind, v in before if kind == "submit"} == {account_for(i) for i in range(10)}
    assert {v for kind, v in after if kind == "submit"} == {account_for(10), account_for(11)}


def test_invalid_account_is_skipped_and_never_submitted(ctx, ledger):
    team = _team(4) + [instr("mallory", "0x1234-not-hedera")]

    run = PayrollExecutor(ctx, RUN_ID).execute(team)

    assert run.total_payouts == 4
    assert run.successful_payouts == 4
    assert "mallory" in run.skipped
    assert run.find_payout("mallory") is None
    assert all(c.recipient_account_id != "0x1234-not-hedera" for c in ledger.calls)


def test_ineligible_and_duplicate_instructions_are_excluded(ctx, ledger):
    team = _team(2) + [instr("c9", account_for(9), eligible=False), instr("c0", account_for(0))]

    run = PayrollExecutor(ctx, RUN_ID).execute(team)

    assert run.total_payouts == 2
    assert run.skipped == {"c0": "duplicate payout instruction"}
    assert len(ledger.calls) == 2


def test_accounts_missing_on_instruction_are_looked_up(ledger, verifier, sleep):
    store = InMemoryStore(accounts={"c0": account_for(0)})
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    run = PayrollExecutor(ctx, RUN_ID).execute([instr("c0"), instr("c1")])

    assert run.total_payouts == 1
    assert run.skipped == {"c1": "missing ledger account"}
    assert run.successful_payouts == 1


def test_counts_are_conserved_with_mixed_outcomes(sleep):
    ledger = FakeLedger(
        script={
            account_for(1): [_rejected()],
            account_for(2): [TransferResult.accepted(transaction_id="0.0.1001@1700000001.000000002")],
        }
    )
    verifier = ScriptedVerifier(never_finalize={"0.0.1001@1700000001.000000002"})
    ctx = make_ctx(ledger=ledger, verifier=verifier, sleep=sleep)

    run = PayrollExecutor(ctx, RUN_ID).execute(_team(5))

    assert run.status == "COMPLETED"
    assert run.successful_payouts == 3
    assert run.failed_payouts == 1
    assert run.submitted_unconfirmed == 1
    assert run.total_payouts == run.successful_payouts + run.failed_payouts + run.submitted_unconfirmed
    assert run.find_payout("c2").status == "SUBMITTED"


def test_one_crashing_payout_does_not_affect_its_batch(verifier, store, sleep):
    class FlakyLedger(FakeLedger):
        def submit_transfer(self, request):
            if request.recipient_account_id == account_for(3):
                raise ConnectionResetError("socket closed")
            return super().submit_transfer(request)

    ledger = FlakyLedger()
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    run = PayrollExecutor(ctx, RUN_ID).execute(_team(6))

    assert run.status == "COMPLETED"
    assert run.successful_payouts == 5
    assert run.failed_payouts == 1
    crashed = run.find_payout("c3")
    assert crashed.status == "FAILED"
    assert "socket closed" in crashed.last_error


def test_payouts_are_persisted_with_ledger_reference(ctx, store):
    run = PayrollExecutor(ctx, RUN_ID).execute(_team(2))

    saved = store.payout(RUN_ID, "c0")
    assert saved.status == "CONFIRMED"
    assert saved.transaction_id == run.find_payout("c0").transaction_id
    assert store.runs[RUN_ID].status == "COMPLETED"
    assert store.runs[RUN_ID].finished_at is not None


def test_load_failure_fails_the_run(ctx, store):
    store.load_error = RuntimeError("database unavailable")

    run = PayrollExecutor(ctx, RUN_ID).execute()

    assert run.status == "FAILED"
    assert run.error == "database unavailable"
    assert store.runs[RUN_ID].status == "FAILED"
    assert get_counter("payroll_runs_total", {"status": "FAILED"}) == 1


def test_empty_run_completes_without_submissions(ctx, ledger, sleep):
    run = PayrollExecutor(ctx, RUN_ID).execute([])

    assert run.status == "COMPLETED"
    assert run.total_payouts == 0
    assert ledger.calls == []
    assert sleep.waits == []


def test_concurrent_execution_of_same_run_is_rejected(ctx):
    ctx.acquire_run(RUN_ID)
    try:
        with pytest.raises(RunAlreadyActive):
            PayrollExecutor(ctx, RUN_ID).execute(_team(1))
    finally:
        ctx.release_run(RUN_ID)


def test_run_claimed_elsewhere_is_rejected(ctx, store, ledger):
    store.executing.add(RUN_ID)

    with pytest.raises(RunAlreadyActive):
        PayrollExecutor(ctx, RUN_ID).execute(_team(1))

    assert ledger.calls == []
    assert not ctx.is_active(RUN_ID)


def test_stop_request_ends_run_after_current_batch(ledger, verifier, store):
    executor = None

    class StopOnDelay(RecordingSleep):
        def __call__(self, seconds):
            super().__call__(seconds)
            executor.request_stop()

    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=StopOnDelay())
    executor = PayrollExecutor(ctx, RUN_ID)

    run = executor.execute(_team(12))

    assert run.status == "FAILED"
    assert run.error == "stopped by operator"
    assert len(run.payouts) == 10
    assert len(ledger.calls) == 10


def test_artifacts_are_attached(ledger, verifier, store, sleep):
    publisher = FakePublisher()
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep, publisher=publisher)

    run = PayrollExecutor(ctx, RUN_ID).execute(_team(2))

    assert run.artifacts.manifest_cid == "bafy-manifest"
    assert publisher.published[0].successful_payouts == 2
    assert store.runs[RUN_ID].artifacts.json_cid == "bafy-json"


def test_artifact_failure_does_not_fail_the_run(ledger, verifier, store, sleep):
    publisher = FakePublisher(error=RuntimeError("ipfs down"))
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep, publisher=publisher)

    run = PayrollExecutor(ctx, RUN_ID).execute(_team(2))

    assert run.status == "COMPLETED"
    assert run.artifacts.json_cid is None


def test_second_execute_does_not_resubmit_settled_payouts(verifier, sleep):
    ledger = FakeLedger(script={account_for(1): [_rejected()]})
    store = InMemoryStore(instructions={RUN_ID: _team(3)})
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    PayrollExecutor(ctx, RUN_ID).execute()
    run = PayrollExecutor(ctx, RUN_ID).execute()

    assert len(ledger.calls) == 3
    assert run.status == "COMPLETED"
    assert run.total_payouts == 3
    assert (run.successful_payouts, run.failed_payouts) == (2, 1)
    assert run.find_payout("c0").attempts == 1
    assert store.history[(RUN_ID, "c0")] == ["SUBMITTED", "CONFIRMED"]


def test_execute_after_stop_submits_only_the_remaining_payouts(ledger, verifier):
    store = InMemoryStore(instructions={RUN_ID: _team(12)})
    executor = None

    class StopOnDelay(RecordingSleep):
        def __call__(self, seconds):
            super().__call__(seconds)
            executor.request_stop()

    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=StopOnDelay())
    executor = PayrollExecutor(ctx, RUN_ID)
    assert executor.execute().status == "FAILED"

    run = PayrollExecutor(ctx, RUN_ID).execute()

    assert run.status == "COMPLETED"
    assert run.successful_payouts == 12
    assert len(ledger.calls) == 12
    assert {c.recipient_account_id for c in ledger.calls[10:]} == {account_for(10), account_for(11)}


def test_retry_failed_payouts_recovers_some(verifier, sleep):
    # 10 payouts, 3 rejected; on retry two go through and one is rejected again
    not_associated = TransferResult.failed("TOKEN_NOT_ASSOCIATED_TO_ACCOUNT", "recipient not associated", retryable=False)
    ledger = FakeLedger(
        script={
            account_for(2): [_rejected()],
            account_for(5): [_rejected()],
            account_for(7): [_rejected(), not_associated],
        }
    )
    store = InMemoryStore(instructions={RUN_ID: _team(10)})
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    first = PayrollExecutor(ctx, RUN_ID).execute()
    assert (first.successful_payouts, first.failed_payouts) == (7, 3)

    # a fresh executor reloads the run from the store
    run = PayrollExecutor(ctx, RUN_ID).retry_failed_payouts(RUN_ID)

    assert run.successful_payouts == 9
    assert run.failed_payouts == 1
    assert run.status == "COMPLETED"
    assert run.find_payout("c2").status == "CONFIRMED"
    assert run.find_payout("c2").attempts == 2
    assert run.find_payout("c7").status == "FAILED"
    assert run.find_payout("c7").attempts == 2
    assert run.find_payout("c7").last_error == "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT: recipient not associated"
    assert len(ledger.calls_for(account_for(0))) == 1
    assert store.runs[RUN_ID].successful_payouts == 9
    assert store.runs[RUN_ID].status == "COMPLETED"


def test_retry_is_rejected_while_run_is_claimed_elsewhere(verifier, sleep):
    ledger = FakeLedger(script={account_for(0): [_rejected()]})
    store = InMemoryStore(instructions={RUN_ID: _team(1)})
    PayrollExecutor(make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep), RUN_ID).execute()

    # another process holds the run
    store.executing.add(RUN_ID)
    other = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    with pytest.raises(RunAlreadyActive):
        PayrollExecutor(other, RUN_ID).retry_failed_payouts()

    assert len(ledger.calls) == 1
    assert store.runs[RUN_ID].failed_payouts == 1


def test_retry_waits_between_batches(verifier):
    ledger = FakeLedger(script={account_for(i): [_rejected()] for i in range(12)})
    store = InMemoryStore(instructions={RUN_ID: _team(12)})
    sleep = RecordingSleep()
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    executor = PayrollExecutor(ctx, RUN_ID)
    assert executor.execute().failed_payouts == 12
    run = executor.retry_failed_payouts()

    assert run.successful_payouts == 12
    assert sleep.waits == [2.0, 2.0]


def test_retry_never_resubmits_submitted_payouts(sleep):
    stuck = "0.0.1001@1700000001.000000001"
    ledger = FakeLedger(
        script={
            account_for(0): [TransferResult.accepted(transaction_id=stuck)],
            account_for(1): [_rejected()],
        }
    )
    verifier = ScriptedVerifier(never_finalize={stuck})
    store = InMemoryStore(instructions={RUN_ID: _team(2)})
    ctx = make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)

    executor = PayrollExecutor(ctx, RUN_ID)
    executor.execute()
    run = executor.retry_failed_payouts()

    assert len(ledger.calls_for(account_for(0))) == 1
    assert run.find_payout("c0").status == "SUBMITTED"
    assert run.find_payout("c1").status == "CONFIRMED"
    assert run.failed_payouts == 0


def test_retry_unknown_run_raises(ctx):
    with pytest.raises(RunNotFound):
        PayrollExecutor(ctx, "missing-run").retry_failed_payouts()
