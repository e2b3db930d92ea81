"""payroll schema

Revision ID: 0001_payroll_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payroll_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS payroll;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payroll.contributors (
          id text PRIMARY KEY,
          github_handle text,
          hedera_account_id text,
          email text,
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payroll.runs (
          id text PRIMARY KEY,
          status text NOT NULL DEFAULT 'PENDING'
            CHECK (status IN ('PENDING', 'EXECUTING', 'COMPLETED', 'FAILED')),
          asset text NOT NULL DEFAULT 'HBAR',
          asset_decimals integer NOT NULL DEFAULT 8,
          total_payouts integer NOT NULL DEFAULT 0,
          successful_payouts integer NOT NULL DEFAULT 0,
          failed_payouts integer NOT NULL DEFAULT 0,
          error text,
          started_at timestamptz,
          finished_at timestamptz,
          artifacts jsonb NOT NULL DEFAULT '{}'::jsonb,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payroll.payouts (
          id text PRIMARY KEY,
          run_id text NOT NULL REFERENCES payroll.runs(id) ON DELETE CASCADE,
          contributor_id text NOT NULL,
          recipient_account_id text,
          amount bigint NOT NULL CHECK (amount > 0),
          asset text,
          eligible boolean NOT NULL DEFAULT true,
          usd_amount numeric(18, 2),
          share_ratio numeric(12, 8),
          status text NOT NULL DEFAULT 'PENDING'
            CHECK (status IN ('PENDING', 'SUBMITTED', 'CONFIRMED', 'FAILED')),
          attempts integer NOT NULL DEFAULT 0,
          tx_id text,
          idempotency_key text,
          error text,
          submitted_at timestamptz,
          confirmed_at timestamptz,
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          CONSTRAINT payouts_run_contributor_uniq UNIQUE (run_id, contributor_id),
          CONSTRAINT payouts_submitted_requires_tx CHECK (status <> 'SUBMITTED' OR tx_id IS NOT NULL)
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS payouts_status_submitted_idx
          ON payroll.payouts (submitted_at)
          WHERE status = 'SUBMITTED';
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payroll.payouts;")
    op.execute("DROP TABLE IF EXISTS payroll.runs;")
    op.execute("DROP TABLE IF EXISTS payroll.contributors;")
    op.execute("DROP SCHEMA IF EXISTS payroll;")
