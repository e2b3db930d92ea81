


# app/payroll/repository.py
from __future__ import annotations

import json
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from psycopg2.extras import RealDictCursor

from app.payroll.model import ArtifactRefs, PayoutExecution, PayoutInstruction, RunExecution


def _adapt_json(value: Any):
    """
    psycopg2 can't adapt dict -> use psycopg2.extras.Json
    """
    from psycopg2.extras import Json as Psycopg2Json
    return Psycopg2Json(value)


# ==========================================================
# Runs
# ==========================================================

def claim_run(conn, *, run_id: str) -> bool:
    """
    Move a run to EXECUTING unless another execution already holds it.
    Creates the run row when the caller supplied instructions directly.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO payroll.runs (id, status, started_at, updated_at)
            VALUES (%s, 'EXECUTING', now(), now())
            ON CONFLICT (id) DO UPDATE
              SET status = 'EXECUTING',
                  error = NULL,
                  started_at = now(),
                  finished_at = NULL,
                  updated_at = now()
              WHERE payroll.runs.status <> 'EXECUTING'
            RETURNING id
            """,
            (run_id,),
        )
        return cur.fetchone() is not None


def save_run(conn, *, run: RunExecution) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE payroll.runs
            SET
              status = %s,
              total_payouts = %s,
              successful_payouts = %s,
              failed_payouts = %s,
              error = %s,
              started_at = %s,
              finished_at = %s,
              artifacts = %s::jsonb,
              updated_at = now()
            WHERE id = %s
            """,
            (
                run.status,
                run.total_payouts,
                run.successful_payouts,
                run.failed_payouts,
                run.error,
                run.started_at,
                run.finished_at,
                _adapt_json(run.artifacts.to_dict()),
                run.run_id,
            ),
        )


def get_run(conn, *, run_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, status, total_payouts, successful_payouts, failed_payouts,
                   error, started_at, finished_at, artifacts
            FROM payroll.runs
            WHERE id = %s
            """,
            (run_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


# ==========================================================
# Payouts
# ==========================================================

def save_payout(conn, *, run_id: str, payout: PayoutExecution) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO payroll.payouts (
              id, run_id, contributor_id, recipient_account_id, amount, asset,
              status, attempts, tx_id, idempotency_key, error,
              submitted_at, confirmed_at, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now(), now())
            ON CONFLICT (run_id, contributor_id) DO UPDATE
              SET
                recipient_account_id = COALESCE(EXCLUDED.recipient_account_id, payroll.payouts.recipient_account_id),
                amount = COALESCE(EXCLUDED.amount, payroll.payouts.amount),
                asset = COALESCE(EXCLUDED.asset, payroll.payouts.asset),
                status = EXCLUDED.status,
                attempts = EXCLUDED.attempts,
                tx_id = COALESCE(EXCLUDED.tx_id, payroll.payouts.tx_id),
                idempotency_key = COALESCE(EXCLUDED.idempotency_key, payroll.payouts.idempotency_key),
                error = EXCLUDED.error,
                submitted_at = COALESCE(EXCLUDED.submitted_at, payroll.payouts.submitted_at),
                confirmed_at = COALESCE(EXCLUDED.confirmed_at, payroll.payouts.confirmed_at),
                updated_at = now()
            """,
            (
                payout.payout_id,
                run_id,
                payout.contributor_id,
                payout.recipient_account_id,
                payout.amount,
                payout.asset,
                payout.status,
                payout.attempts,
                payout.transaction_id,
                payout.idempotency_key,
                payout.last_error,
                payout.submitted_at,
                payout.confirmed_at,
            ),
        )


def _row_to_payout(row: dict) -> PayoutExecution:
    return PayoutExecution(
        payout_id=row["id"],
        contributor_id=row["contributor_id"],
        status=row["status"],
        attempts=int(row.get("attempts") or 0),
        last_error=row.get("error"),
        transaction_id=row.get("tx_id"),
        submitted_at=row.get("submitted_at"),
        confirmed_at=row.get("confirmed_at"),
        recipient_account_id=row.get("recipient_account_id"),
        amount=int(row["amount"]) if row.get("amount") is not None else None,
        asset=row.get("asset"),
        idempotency_key=row.get("idempotency_key"),
    )


def list_payouts(conn, *, run_id: str) -> list[PayoutExecution]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, run_id, contributor_id, recipient_account_id, amount, asset,
                   status, attempts, tx_id, idempotency_key, error, submitted_at, confirmed_at
            FROM payroll.payouts
            WHERE run_id = %s
            ORDER BY created_at, contributor_id
            """,
            (run_id,),
        )
        return [_row_to_payout(dict(r)) for r in cur.fetchall()]


def list_submitted_payouts(conn, *, run_id: str | None = None, limit: int = 500) -> list[tuple[str, PayoutExecution]]:
    run_filter = ""
    params: list[Any] = []
    if run_id:
        run_filter = "AND p.run_id = %s"
        params.append(run_id)
    params.append(limit)

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT p.id, p.run_id, p.contributor_id, p.recipient_account_id, p.amount, p.asset,
                   p.status, p.attempts, p.tx_id, p.idempotency_key, p.error,
                   p.submitted_at, p.confirmed_at
            FROM payroll.payouts p
            WHERE p.status = 'SUBMITTED'
              AND p.tx_id IS NOT NULL
              {run_filter}
            ORDER BY p.submitted_at NULLS FIRST
            LIMIT %s
            """,
            tuple(params),
        )
        return [(r["run_id"], _row_to_payout(dict(r))) for r in cur.fetchall()]


# ==========================================================
# Instructions / contributors
# ==========================================================

_INSTRUCTION_SELECT = """
    SELECT
      p.contributor_id,
      p.amount,
      COALESCE(p.asset, r.asset) AS asset,
      COALESCE(r.asset_decimals, 8) AS asset_decimals,
      p.eligible,
      c.hedera_account_id AS recipient_account_id,
      c.github_handle,
      p.usd_amount,
      p.share_ratio
    FROM payroll.payouts p
    JOIN payroll.runs r ON r.id = p.run_id
    LEFT JOIN payroll.contributors c ON c.id = p.contributor_id
"""


def _row_to_instruction(row: dict) -> PayoutInstruction:
    return PayoutInstruction(
        contributor_id=row["contributor_id"],
        amount=int(row["amount"]),
        asset=row["asset"],
        eligible=bool(row["eligible"]),
        recipient_account_id=row.get("recipient_account_id"),
        asset_decimals=int(row.get("asset_decimals") or 8),
        github_login=row.get("github_handle"),
        usd_amount=float(row["usd_amount"]) if row.get("usd_amount") is not None else None,
        share_ratio=float(row["share_ratio"]) if row.get("share_ratio") is not None else None,
    )


def load_instructions(conn, *, run_id: str) -> list[PayoutInstruction]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            _INSTRUCTION_SELECT + " WHERE p.run_id = %s ORDER BY p.created_at, p.contributor_id",
            (run_id,),
        )
        return [_row_to_instruction(dict(r)) for r in cur.fetchall()]


def load_instruction(conn, *, run_id: str, contributor_id: str) -> PayoutInstruction | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            _INSTRUCTION_SELECT + " WHERE p.run_id = %s AND p.contributor_id = %s",
            (run_id, contributor_id),
        )
        row = cur.fetchone()
        return _row_to_instruction(dict(row)) if row else None


def get_contributor_account(conn, *, contributor_id: str) -> str | None:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT hedera_account_id FROM payroll.contributors WHERE id = %s",
            (contributor_id,),
        )
        row = cur.fetchone()
        return row[0] if row else None


# ==========================================================
# Store facade used by the execution context
# ==========================================================

class PostgresPayrollStore:
    """Opens one short transaction per call; safe to share between batch threads."""

    def __init__(self, conn_factory: Callable[[], AbstractContextManager] | None = None):
        if conn_factory is None:
            from db import get_conn
            conn_factory = get_conn
        self._conn = conn_factory

    def claim_run(self, run_id: str) -> bool:
        with self._conn() as conn:
            return claim_run(conn, run_id=run_id)

    def save_run(self, run: RunExecution) -> None:
        with self._conn() as conn:
            save_run(conn, run=run)

    def save_payout(self, run_id: str, payout: PayoutExecution) -> None:
        with self._conn() as conn:
            save_payout(conn, run_id=run_id, payout=payout)

    def load_instructions(self, run_id: str) -> list[PayoutInstruction]:
        with self._conn() as conn:
            return load_instructions(conn, run_id=run_id)

    def load_instruction(self, run_id: str, contributor_id: str) -> Optional[PayoutInstruction]:
        with self._conn() as conn:
            return load_instruction(conn, run_id=run_id, contributor_id=contributor_id)

    def get_contributor_account(self, contributor_id: str) -> Optional[str]:
        with self._conn() as conn:
            return get_contributor_account(conn, contributor_id=contributor_id)

    def list_submitted(self, run_id: Optional[str] = None) -> list[tuple[str, PayoutExecution]]:
        with self._conn() as conn:
            return list_submitted_payouts(conn, run_id=run_id)

    def load_run(self, run_id: str) -> Optional[RunExecution]:
        with self._conn() as conn:
            row = get_run(conn, run_id=run_id)
            if row is None:
                return None
            payouts = list_payouts(conn, run_id=run_id)

        artifacts = row.get("artifacts") or {}
        if isinstance(artifacts, str):
            artifacts = json.loads(artifacts)
        return RunExecution(
            run_id=row["id"],
            started_at=row.get("started_at") or datetime.now(timezone.utc),
            status=row["status"],
            total_payouts=int(row.get("total_payouts") or 0),
            successful_payouts=int(row.get("successful_payouts") or 0),
            failed_payouts=int(row.get("failed_payouts") or 0),
            # rows still PENDING were never attempted
            payouts=[p for p in payouts if p.status != "PENDING"],
            finished_at=row.get("finished_at"),
            error=row.get("error"),
            artifacts=ArtifactRefs(**{k: artifacts.get(k) for k in ("json_cid", "csv_cid", "pdf_cid", "manifest_cid")}),
        )
