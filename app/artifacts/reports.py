from __future__ import annotations

import csv
import hashlib
import io
import json
from datetime import datetime, timezone
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.payroll.model import RunExecution

REPORT_VERSION = "1.0.0"

CSV_COLUMNS = [
    "payout_id",
    "contributor_id",
    "recipient_account_id",
    "asset",
    "amount",
    "status",
    "attempts",
    "transaction_id",
    "submitted_at",
    "confirmed_at",
    "error",
]


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def build_report(run: RunExecution, *, network: str) -> dict[str, Any]:
    data = run.to_dict()
    data["metadata"] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "version": REPORT_VERSION,
        "network": network,
    }
    return data


def render_json(run: RunExecution, *, network: str) -> bytes:
    return json.dumps(build_report(run, network=network), indent=2, sort_keys=True).encode("utf-8")


def render_csv(run: RunExecution) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for p in run.payouts:
        row = p.to_dict()
        writer.writerow(
            [
                row["payout_id"],
                row["contributor_id"],
                row["recipient_account_id"] or "",
                row["asset"] or "",
                row["amount"] if row["amount"] is not None else "",
                row["status"],
                row["attempts"],
                row["transaction_id"] or "",
                row["submitted_at"] or "",
                row["confirmed_at"] or "",
                row["last_error"] or "",
            ]
        )
    return buf.getvalue().encode("utf-8")


def render_pdf(run: RunExecution, *, network: str) -> bytes:
    """Human readable payslip: run summary followed by one row per payout."""
    out = io.BytesIO()
    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(out, pagesize=LETTER, title=f"Payroll run {run.run_id}")

    story: list = [
        Paragraph(escape(f"Payroll run {run.run_id}"), styles["Title"]),
        Paragraph(escape(f"Network: {network}"), styles["Normal"]),
        Paragraph(escape(f"Status: {run.status}"), styles["Normal"]),
        Paragraph(
            escape(
                f"Payouts: {run.total_payouts} total, {run.successful_payouts} confirmed, "
                f"{run.failed_payouts} failed, {run.submitted_unconfirmed} awaiting confirmation"
            ),
            styles["Normal"],
        ),
        Spacer(1, 12),
    ]

    rows = [["Contributor", "Account", "Amount", "Asset", "Status", "Transaction"]]
    for p in run.payouts:
        rows.append(
            [
                p.contributor_id,
                p.recipient_account_id or "",
                "" if p.amount is None else str(p.amount),
                p.asset or "",
                p.status,
                p.transaction_id or "",
            ]
        )
    table = Table(rows, repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ]
        )
    )
    story.append(table)

    if run.skipped:
        story.append(Spacer(1, 12))
        story.append(Paragraph("Skipped", styles["Heading2"]))
        for contributor_id, reason in sorted(run.skipped.items()):
            story.append(Paragraph(escape(f"{contributor_id}: {reason}"), styles["Normal"]))

    doc.build(story)
    return out.getvalue()


def build_manifest(run: RunExecution, *, network: str, files: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "version": REPORT_VERSION,
        "run_id": run.run_id,
        "network": network,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "status": run.status,
        "files": files,
    }
