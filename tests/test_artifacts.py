from __future__ import annotations

import json
from datetime import datetime, timezone

from app.artifacts import lighthouse
from app.artifacts.lighthouse import LighthousePublisher
from app.artifacts.reports import render_csv, render_json, render_pdf, sha256_hex
from app.payroll.model import PayoutExecution, RunExecution
from services.metrics import get_counter


class _FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


def _run() -> RunExecution:
    run = RunExecution(
        run_id="run-1",
        started_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        status="COMPLETED",
        total_payouts=2,
        successful_payouts=1,
        failed_payouts=1,
        finished_at=datetime(2026, 10, 1, 0, 5, tzinfo=timezone.utc),
    )
    run.payouts = [
        PayoutExecution(
            payout_id="payout_run-1_alice",
            contributor_id="alice",
            status="CONFIRMED",
            attempts=1,
            transaction_id="0.0.1001@1700000000.000000001",
            recipient_account_id="0.0.5001",
            amount=100_000_000,
            asset="HBAR",
        ),
        PayoutExecution(
            payout_id="payout_run-1_bob",
            contributor_id="bob",
            status="FAILED",
            attempts=3,
            last_error="BUSY: network busy",
            recipient_account_id="0.0.5002",
            amount=50_000_000,
            asset="HBAR",
        ),
    ]
    run.skipped = {"carol": "missing ledger account"}
    return run


def test_reports_render():
    run = _run()

    data = json.loads(render_json(run, network="testnet"))
    assert data["run_id"] == "run-1"
    assert data["metadata"]["network"] == "testnet"
    assert len(data["payouts"]) == 2

    lines = render_csv(run).decode("utf-8").splitlines()
    assert lines[0].startswith("payout_id,contributor_id,recipient_account_id")
    assert len(lines) == 3
    assert "BUSY: network busy" in lines[2]

    assert render_pdf(run, network="testnet").startswith(b"%PDF")


def test_publisher_disabled_without_api_key(monkeypatch):
    def fake_post(*args, **kwargs):
        raise AssertionError("no upload expected")

    monkeypatch.setattr("app.artifacts.lighthouse.requests.post", fake_post)

    refs = LighthousePublisher(api_key="").publish(_run())

    assert refs.json_cid is None
    assert refs.manifest_cid is None


def test_publisher_uploads_reports_and_manifest(monkeypatch):
    uploads = []

    def fake_post(url, headers=None, files=None, timeout=None):
        filename, content, content_type = files["file"]
        uploads.append((url, headers, filename, content))
        return _FakeResponse(200, {"Name": filename, "Hash": f"bafy-{len(uploads)}", "Size": str(len(content))})

    monkeypatch.setattr("app.artifacts.lighthouse.requests.post", fake_post)

    refs = LighthousePublisher(api_key="lh-key", base_url="https://lh.test", network="testnet").publish(_run())

    assert [u[2] for u in uploads] == [
        "payroll-data-run-1.json",
        "payroll-slip-run-1.csv",
        "payroll-slip-run-1.pdf",
        "payroll-manifest-run-1.json",
    ]
    assert all(u[0] == "https://lh.test/api/v0/add" for u in uploads)
    assert uploads[0][1]["Authorization"] == "Bearer lh-key"
    assert (refs.json_cid, refs.csv_cid, refs.pdf_cid, refs.manifest_cid) == ("bafy-1", "bafy-2", "bafy-3", "bafy-4")

    manifest = json.loads(uploads[3][3])
    assert [f["cid"] for f in manifest["files"]] == ["bafy-1", "bafy-2", "bafy-3"]
    assert manifest["files"][1]["sha256"] == sha256_hex(uploads[1][3])
    assert get_counter("artifact_uploads_total", {"kind": "manifest", "ok": "true"}) == 1


def test_manifest_skipped_when_report_upload_fails(monkeypatch):
    def fake_post(url, headers=None, files=None, timeout=None):
        filename = files["file"][0]
        if filename.endswith(".csv"):
            return _FakeResponse(500, {"error": "boom"})
        return _FakeResponse(200, {"Hash": "bafy-ok", "Size": "10"})

    monkeypatch.setattr("app.artifacts.lighthouse.requests.post", fake_post)

    refs = LighthousePublisher(api_key="lh-key", base_url="https://lh.test").publish(_run())

    assert refs.json_cid == "bafy-ok"
    assert refs.csv_cid is None
    assert refs.manifest_cid is None
    assert get_counter("artifact_uploads_total", {"kind": "csv", "ok": "false"}) == 1


def test_upload_network_error(monkeypatch):
    def fake_post(*args, **kwargs):
        raise lighthouse.requests.ConnectionError("dns failure")

    monkeypatch.setattr("app.artifacts.lighthouse.requests.post", fake_post)

    result = LighthousePublisher(api_key="lh-key").upload(b"{}", "x.json", kind="json", content_type="application/json")

    assert result.ok is False
    assert "dns failure" in result.error
