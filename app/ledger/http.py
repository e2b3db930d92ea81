

# app/ledger/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from services.redaction import redact_dict

logger = logging.getLogger("payroll.http")

_SECRET_HEADERS = ("authorization", "x-api-key")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[Any]
    text: str


class HttpClient:
    def __init__(self, timeout_s: float = 20.0, follow_redirects: bool = True, transport: httpx.BaseTransport | None = None):
        # httpx.Client is safe to share between the worker threads of a batch
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects, transport=transport)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
        debug: bool = False,
    ) -> HttpResponse:
        r = self._client.post(url, headers=headers, json=json_body)
        if debug:
            self._debug_dump("POST", url, headers, json_body, r)
        return self._wrap(r)

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str],
        debug: bool = False,
    ) -> HttpResponse:
        r = self._client.get(url, headers=headers)
        if debug:
            self._debug_dump("GET", url, headers, None, r)
        return self._wrap(r)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], json_body: Any, r: httpx.Response) -> None:
        safe_headers = {
            k: ("REDACTED" if k.lower() in _SECRET_HEADERS else v)
            for k, v in (headers or {}).items()
        }
        logger.debug(
            "%s %s headers=%s json=%s -> status=%s text=%s",
            method,
            url,
            safe_headers,
            redact_dict(json_body) if isinstance(json_body, dict) else json_body,
            r.status_code,
            r.text[:300],
        )


def is_retryable_http(code: int) -> bool:
    # Retry transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)
