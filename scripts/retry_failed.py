# scripts/retry_failed.py
from __future__ import annotations

import argparse
import logging
import sys

from app.payroll.context import build_context
from app.payroll.errors import RunAlreadyActive, RunNotFound
from app.payroll.orchestrator import PayrollExecutor
from services.observability import configure_logging


logger = logging.getLogger("payroll.retry_failed")


def main() -> int:
    parser = argparse.ArgumentParser(description="Retry the FAILED payouts of a payroll run.")
    parser.add_argument("run_id")
    args = parser.parse_args()

    configure_logging(logging.INFO)

    executor = PayrollExecutor(build_context(), args.run_id)
    try:
        run = executor.retry_failed_payouts(args.run_id)
    except (RunAlreadyActive, RunNotFound) as exc:
        logger.error("%s", exc)
        return 2

    print(
        "run:",
        run.run_id,
        f"successful={run.successful_payouts}",
        f"failed={run.failed_payouts}",
        f"submitted_unconfirmed={run.submitted_unconfirmed}",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
