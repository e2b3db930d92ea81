from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def get_counter(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def reset_metrics() -> None:
    with _lock:
        _counters.clear()


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_payout_attempt(asset: str, result: str) -> None:
    _inc("payout_attempts_total", {"asset": asset, "result": result})


def increment_payroll_run(status: str) -> None:
    _inc("payroll_runs_total", {"status": status})


def increment_finality_poll(outcome: str) -> None:
    _inc("finality_polls_total", {"outcome": outcome})


def increment_artifact_upload(kind: str, ok: bool) -> None:
    _inc("artifact_uploads_total", {"kind": kind, "ok": str(ok).lower()})


def render_prometheus(gauges: dict[str, int] | None = None) -> str:
    lines: list[str] = []
    for name, value in sorted((gauges or {}).items()):
        lines.append(f"# TYPE {name} gauge")
        lines.append(f"{name} {int(value)}")
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
