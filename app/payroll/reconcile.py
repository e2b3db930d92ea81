from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from app.ledger.mirror import MirrorLookup
from app.payroll.context import ExecutionContext
from app.payroll.state_machine import assert_transition
from services.observability import run_scope

logger = logging.getLogger("payroll.reconcile")


class TransactionLookup(Protocol):
    def lookup(self, transaction_id: str) -> MirrorLookup: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reconcile_submitted(ctx: ExecutionContext, *, run_id: Optional[str] = None) -> dict[str, Any]:
    """
    One pass over SUBMITTED payouts: a single mirror lookup each.

    SUCCESS moves the payout to CONFIRMED, an explicit non-success result
    moves it to FAILED, and anything else leaves it SUBMITTED. Nothing is
    ever resubmitted from here.
    """
    verifier: TransactionLookup = ctx.verifier  # type: ignore[assignment]

    summary = {"checked": 0, "confirmed": 0, "failed": 0, "still_pending": 0}
    items: list[dict[str, Any]] = []
    touched_runs: set[str] = set()

    for payout_run_id, payout in ctx.store.list_submitted(run_id):
        summary["checked"] += 1
        with run_scope(payout_run_id):
            lookup = verifier.lookup(payout.transaction_id)

            if lookup.succeeded:
                assert_transition(payout.status, "CONFIRMED")
                payout.status = "CONFIRMED"
                payout.confirmed_at = _utcnow()
                payout.last_error = None
                category = "confirmed"
            elif lookup.failed:
                assert_transition(payout.status, "FAILED")
                payout.status = "FAILED"
                payout.last_error = f"Ledger result {lookup.result}"
                category = "failed"
            else:
                summary["still_pending"] += 1
                continue

            ctx.store.save_payout(payout_run_id, payout)
            touched_runs.add(payout_run_id)
            summary[category] += 1
            logger.info("payout=%s tx=%s reconciled -> %s", payout.payout_id, payout.transaction_id, payout.status)
            items.append(
                {
                    "category": category,
                    "run_id": payout_run_id,
                    "payout_id": payout.payout_id,
                    "contributor_id": payout.contributor_id,
                    "transaction_id": payout.transaction_id,
                    "ledger_result": lookup.result,
                    "consensus_timestamp": lookup.consensus_timestamp,
                }
            )

    for touched in sorted(touched_runs):
        _refresh_run_counts(ctx, touched)

    return {"run_at": _utcnow().isoformat(), "summary": summary, "items": items}


def _refresh_run_counts(ctx: ExecutionContext, run_id: str) -> None:
    run = ctx.store.load_run(run_id)
    if run is None:
        return
    run.successful_payouts = sum(1 for p in run.payouts if p.status == "CONFIRMED")
    run.failed_payouts = sum(1 for p in run.payouts if p.status == "FAILED")
    ctx.store.save_run(run)
