

# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


MIRROR_NODE_URLS = {
    "mainnet": "https://mainnet.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
    "previewnet": "https://previewnet.mirrornode.hedera.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="postgresql://localhost/payroll")

    # -----------------------
    # Hedera network
    # -----------------------
    HEDERA_NETWORK: Literal["testnet", "mainnet", "previewnet"] = "testnet"
    HEDERA_OPERATOR_ACCOUNT_ID: str = ""
    LEDGER_STRICT_STARTUP_VALIDATION: bool = False

    # Signing gateway (holds the treasury key, submits transactions)
    LEDGER_GATEWAY_URL: str = ""
    LEDGER_GATEWAY_API_KEY: str = ""

    # Mirror node; empty => public mirror for HEDERA_NETWORK
    MIRROR_NODE_URL: str = ""

    # HTTP timeouts
    LEDGER_HTTP_TIMEOUT_S: float = 20.0
    MIRROR_HTTP_TIMEOUT_S: float = 10.0

    # -----------------------
    # Payout execution
    # -----------------------
    PAYROLL_BATCH_SIZE: int = Field(default=10, ge=1)
    PAYROLL_BATCH_DELAY_S: float = Field(default=2.0, ge=0)
    PAYROLL_MAX_RETRIES: int = Field(default=3, ge=1)
    PAYROLL_RETRY_DELAY_S: float = Field(default=1.0, ge=0)

    # Finality polling: 5s * 12 => 60s
    FINALITY_POLL_INTERVAL_S: float = Field(default=5.0, ge=0)
    FINALITY_MAX_ATTEMPTS: int = Field(default=12, ge=1)

    # -----------------------
    # Artifacts (Lighthouse / IPFS)
    # -----------------------
    LIGHTHOUSE_API_KEY: str = ""
    LIGHTHOUSE_BASE_URL: str = "https://node.lighthouse.storage"
    LIGHTHOUSE_GATEWAY_URL: str = "https://gateway.lighthouse.storage/ipfs"

    def mirror_node_url(self) -> str:
        url = (self.MIRROR_NODE_URL or "").strip()
        if url:
            return url.rstrip("/")
        return MIRROR_NODE_URLS[self.HEDERA_NETWORK]


settings = Settings()
