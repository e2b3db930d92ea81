from __future__ import annotations

import argparse
import logging

from app.payroll.context import build_context
from app.payroll.reconcile import reconcile_submitted
from services.observability import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Check SUBMITTED payouts against the mirror node once.")
    parser.add_argument("--run-id", default=None)
    args = parser.parse_args()

    configure_logging(logging.INFO)

    result = reconcile_submitted(build_context(), run_id=args.run_id)
    summary = result["summary"]

    print(
        "counts:",
        f"checked={summary['checked']}",
        f"confirmed={summary['confirmed']}",
        f"failed={summary['failed']}",
        f"still_pending={summary['still_pending']}",
    )


if __name__ == "__main__":
    main()
