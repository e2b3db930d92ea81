from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from app.artifacts.reports import build_manifest, render_csv, render_json, render_pdf, sha256_hex
from app.payroll.model import ArtifactRefs, RunExecution
from services.metrics import increment_artifact_upload
from settings import settings

logger = logging.getLogger("payroll.artifacts")


@dataclass(frozen=True)
class UploadResult:
    ok: bool
    cid: Optional[str] = None
    size: Optional[int] = None
    error: Optional[str] = None


def _safe_json(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class LighthousePublisher:
    """
    Renders the run reports and pins them on IPFS through Lighthouse.

    Without an API key the publisher is disabled: publish() logs a warning and
    returns empty refs.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        gateway_url: str | None = None,
        network: str | None = None,
        timeout_s: float = 60.0,
    ):
        self.api_key = (settings.LIGHTHOUSE_API_KEY if api_key is None else api_key).strip()
        self.base_url = (base_url or settings.LIGHTHOUSE_BASE_URL).strip().rstrip("/")
        self.gateway_url = (gateway_url or settings.LIGHTHOUSE_GATEWAY_URL).strip().rstrip("/")
        self.network = network or settings.HEDERA_NETWORK
        self.timeout_s = timeout_s

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def gateway_link(self, cid: str) -> str:
        return f"{self.gateway_url}/{cid}"

    def upload(self, content: bytes, filename: str, *, kind: str, content_type: str) -> UploadResult:
        url = f"{self.base_url}/api/v0/add"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            resp = requests.post(
                url,
                headers=headers,
                files={"file": (filename, content, content_type)},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            increment_artifact_upload(kind, False)
            logger.warning("lighthouse upload failed file=%s err=%s", filename, exc)
            return UploadResult(ok=False, error=str(exc))

        if resp.status_code >= 300:
            increment_artifact_upload(kind, False)
            logger.warning("lighthouse upload file=%s http_status=%s", filename, resp.status_code)
            return UploadResult(ok=False, error=f"HTTP {resp.status_code}")

        payload = _safe_json(resp)
        cid = payload.get("Hash") if isinstance(payload, dict) else None
        if not cid:
            increment_artifact_upload(kind, False)
            return UploadResult(ok=False, error="Upload failed - no CID returned")

        increment_artifact_upload(kind, True)
        size = payload.get("Size")
        logger.info("artifact uploaded file=%s cid=%s", filename, cid)
        return UploadResult(ok=True, cid=cid, size=int(size) if size is not None else len(content))

    def publish(self, run: RunExecution) -> ArtifactRefs:
        if not self.enabled:
            logger.warning("LIGHTHOUSE_API_KEY not set; skipping artifacts for run %s", run.run_id)
            return ArtifactRefs()

        rendered = [
            ("json", f"payroll-data-{run.run_id}.json", "application/json", render_json(run, network=self.network)),
            ("csv", f"payroll-slip-{run.run_id}.csv", "text/csv", render_csv(run)),
            ("pdf", f"payroll-slip-{run.run_id}.pdf", "application/pdf", render_pdf(run, network=self.network)),
        ]

        refs = ArtifactRefs()
        files: list[dict[str, Any]] = []
        for kind, filename, content_type, content in rendered:
            result = self.upload(content, filename, kind=kind, content_type=content_type)
            if not result.ok:
                continue
            setattr(refs, f"{kind}_cid", result.cid)
            files.append(
                {
                    "kind": kind,
                    "filename": filename,
                    "cid": result.cid,
                    "size": result.size,
                    "sha256": sha256_hex(content),
                    "url": self.gateway_link(result.cid),
                }
            )

        # manifest only when both machine readable reports made it
        if refs.json_cid and refs.csv_cid:
            manifest = build_manifest(run, network=self.network, files=files)
            content = json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")
            result = self.upload(
                content,
                f"payroll-manifest-{run.run_id}.json",
                kind="manifest",
                content_type="application/json",
            )
            refs.manifest_cid = result.cid
        else:
            logger.warning("run %s: report upload incomplete, manifest not published", run.run_id)

        return refs
