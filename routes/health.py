from __future__ import annotations

import os

from fastapi import APIRouter

from db import ping
from settings import settings

router = APIRouter(tags=["health"])


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/healthz")
def healthz():
    db_ok, db_error = ping()
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/health")
def health():
    return {
        "ok": True,
        "network": settings.HEDERA_NETWORK,
        "mirror_node": settings.mirror_node_url(),
        "gateway_configured": bool(settings.LEDGER_GATEWAY_URL and settings.LEDGER_GATEWAY_API_KEY),
        "artifacts_enabled": bool(settings.LIGHTHOUSE_API_KEY),
        "git_sha": _resolve_git_sha(),
    }
