

# app/ledger/validate.py
from __future__ import annotations

import logging
import re
from typing import Optional

from app.ledger.base import NATIVE_ASSET
from settings import settings

logger = logging.getLogger("payroll.ledger")

# Payout recipients live in shard 0 / realm 0
_ACCOUNT_ID_RE = re.compile(r"^0\.0\.\d+$")
_ENTITY_ID_RE = re.compile(r"^\d+\.\d+\.\d+$")
# SDK form "0.0.1234@1700000000.123456789"
_SDK_TX_ID_RE = re.compile(r"^(\d+\.\d+\.\d+)@(\d+)\.(\d+)$")
# Mirror form "0.0.1234-1700000000-123456789"
_MIRROR_TX_ID_RE = re.compile(r"^(\d+\.\d+\.\d+)-(\d+)-(\d+)$")


def is_valid_account_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_ACCOUNT_ID_RE.match(value.strip()))


def is_valid_token_id(value: Optional[str]) -> bool:
    return bool(value) and bool(_ENTITY_ID_RE.match(value.strip()))


def is_valid_asset(value: Optional[str]) -> bool:
    v = (value or "").strip()
    return v.upper() == NATIVE_ASSET or is_valid_token_id(v)


def to_mirror_transaction_id(transaction_id: str) -> str:
    """
    Convert an SDK transaction id to the form the mirror node REST API expects.

    Ids already in mirror form are returned unchanged; nanos are zero-padded
    to 9 digits.
    """
    tx = (transaction_id or "").strip()
    m = _SDK_TX_ID_RE.match(tx)
    if m:
        account, seconds, nanos = m.groups()
        return f"{account}-{seconds}-{nanos.zfill(9)}"
    if _MIRROR_TX_ID_RE.match(tx):
        return tx
    raise ValueError(f"Malformed transaction id: {transaction_id!r}")


def validate_ledger_startup() -> None:
    network = settings.HEDERA_NETWORK
    strict = bool(settings.LEDGER_STRICT_STARTUP_VALIDATION) or network == "mainnet"

    logger.info(
        "ledger startup check: network=%s strict=%s gateway=%s mirror=%s",
        network,
        strict,
        settings.LEDGER_GATEWAY_URL or "<unset>",
        settings.mirror_node_url(),
    )

    if not strict:
        return

    missing: list[str] = []
    if not (settings.LEDGER_GATEWAY_URL or "").strip():
        missing.append("LEDGER_GATEWAY_URL")
    if not (settings.LEDGER_GATEWAY_API_KEY or "").strip():
        missing.append("LEDGER_GATEWAY_API_KEY")
    if not is_valid_account_id(settings.HEDERA_OPERATOR_ACCOUNT_ID):
        missing.append("HEDERA_OPERATOR_ACCOUNT_ID")

    if missing:
        raise RuntimeError(
            "Ledger startup validation failed. "
            f"network={network} "
            "Missing or invalid env vars: " + ", ".join(sorted(missing))
        )
