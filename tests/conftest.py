# tests/conftest.py

from typing import Optional

import pytest
from fastapi.testclient import TestClient

from app.payroll.context import ExecutionContext
from app.payroll.model import PayoutInstruction
from app.payroll.retry import RetryPolicy
from services.metrics import reset_metrics
from tests.fakes import EventLog, FakeLedger, InMemoryStore, RecordingSleep, ScriptedVerifier


RUN_ID = "run-2026-10"


def instr(
    contributor_id: str,
    account: Optional[str] = None,
    *,
    amount: int = 100_000_000,
    asset: str = "HBAR",
    eligible: bool = True,
) -> PayoutInstruction:
    return PayoutInstruction(
        contributor_id=contributor_id,
        amount=amount,
        asset=asset,
        eligible=eligible,
        recipient_account_id=account,
    )


def account_for(n: int) -> str:
    return f"0.0.{5000 + n}"


def make_ctx(
    *,
    ledger=None,
    verifier=None,
    store=None,
    publisher=None,
    sleep=None,
    max_retries: int = 3,
    retry_delay_s: float = 1.0,
    batch_size: int = 10,
    batch_delay_s: float = 2.0,
) -> ExecutionContext:
    return ExecutionContext(
        ledger=ledger or FakeLedger(),
        verifier=verifier or ScriptedVerifier(),
        store=store or InMemoryStore(),
        publisher=publisher,
        retry_policy=RetryPolicy(max_retries=max_retries, retry_delay_s=retry_delay_s),
        batch_size=batch_size,
        batch_delay_s=batch_delay_s,
        poll_interval_s=5.0,
        max_poll_attempts=12,
        sleep=sleep or RecordingSleep(),
    )


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def sleep(events) -> RecordingSleep:
    return RecordingSleep(events)


@pytest.fixture
def ledger(events) -> FakeLedger:
    return FakeLedger(events=events)


@pytest.fixture
def verifier(events) -> ScriptedVerifier:
    return ScriptedVerifier(events=events)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def ctx(ledger, verifier, store, sleep) -> ExecutionContext:
    return make_ctx(ledger=ledger, verifier=verifier, store=store, sleep=sleep)


@pytest.fixture
def client(ctx) -> TestClient:
    from main import app
    from routes.payroll import get_context

    app.dependency_overrides[get_context] = lambda: ctx
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
