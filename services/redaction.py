from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# DER-encoded ed25519 / ECDSA private keys as printed by the Hedera SDKs
_PRIVATE_KEY_RE = re.compile(r"\b(?:0x)?30[0-9a-fA-F]{60,}\b")

_SENSITIVE_KEY_MARKERS = (
    "api_key",
    "apikey",
    "authorization",
    "secret",
    "private_key",
    "signature",
    "password",
)


def _mask_email(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _PRIVATE_KEY_RE.sub("[REDACTED_KEY]", masked)

    if "bearer " in masked.lower():
        return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower().replace("-", "_")
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        else:
            out[k] = redact_value(v)
    return out
