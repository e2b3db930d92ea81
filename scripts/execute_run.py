# scripts/execute_run.py
from __future__ import annotations

import argparse
import logging
import signal
import sys

from app.ledger.validate import validate_ledger_startup
from app.payroll.context import build_context
from app.payroll.errors import RunAlreadyActive
from app.payroll.orchestrator import PayrollExecutor
from services.observability import configure_logging


logger = logging.getLogger("payroll.execute_run")


def main() -> int:
    parser = argparse.ArgumentParser(description="Execute the payouts of one payroll run.")
    parser.add_argument("run_id")
    args = parser.parse_args()

    configure_logging(logging.INFO)
    validate_ledger_startup()

    executor = PayrollExecutor(build_context(), args.run_id)

    def _stop(signum, frame):
        logger.warning("signal %s received; stopping after the current batch", signum)
        executor.request_stop()

    signal.signal(signal.SIGTERM, _stop)

    try:
        run = executor.execute()
    except RunAlreadyActive as exc:
        logger.error("%s", exc)
        return 2

    print(
        "run:",
        run.run_id,
        f"status={run.status}",
        f"total={run.total_payouts}",
        f"successful={run.successful_payouts}",
        f"failed={run.failed_payouts}",
        f"submitted_unconfirmed={run.submitted_unconfirmed}",
        f"skipped={len(run.skipped)}",
    )
    if run.error:
        print("error:", run.error)
    return 0 if run.status == "COMPLETED" else 1


if __name__ == "__main__":
    sys.exit(main())
