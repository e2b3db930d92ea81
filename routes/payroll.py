from __future__ import annotations

import threading
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.payroll.context import ExecutionContext, build_context
from app.payroll.errors import RunAlreadyActive, RunNotFound
from app.payroll.model import PayoutInstruction
from app.payroll.orchestrator import PayrollExecutor
from app.payroll.reconcile import reconcile_submitted

router = APIRouter(prefix="/v1/payroll", tags=["payroll"])

_executors: dict[str, PayrollExecutor] = {}
_executors_lock = threading.Lock()


@lru_cache(maxsize=1)
def get_context() -> ExecutionContext:
    return build_context()


class PayoutInstructionIn(BaseModel):
    contributor_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    asset: str = Field(min_length=1)
    eligible: bool = True
    recipient_account_id: Optional[str] = None
    asset_decimals: int = 8
    github_login: Optional[str] = None


class ExecuteRunIn(BaseModel):
    # None => load instructions from the run's payout rows
    instructions: Optional[list[PayoutInstructionIn]] = None


class ReconcileIn(BaseModel):
    run_id: Optional[str] = None


def _register(run_id: str, executor: PayrollExecutor) -> None:
    with _executors_lock:
        if run_id in _executors:
            raise HTTPException(status_code=409, detail="RUN_ALREADY_EXECUTING")
        _executors[run_id] = executor


def _unregister(run_id: str) -> None:
    with _executors_lock:
        _executors.pop(run_id, None)


def active_run_ids() -> list[str]:
    with _executors_lock:
        return sorted(_executors)


def _run_or_409(run_id: str, executor: PayrollExecutor, fn):
    _register(run_id, executor)
    try:
        return fn()
    except RunAlreadyActive:
        raise HTTPException(status_code=409, detail="RUN_ALREADY_EXECUTING")
    except RunNotFound:
        raise HTTPException(status_code=404, detail="RUN_NOT_FOUND")
    finally:
        _unregister(run_id)


@router.post("/runs/{run_id}/execute")
def execute_run(run_id: str, body: Optional[ExecuteRunIn] = None, ctx: ExecutionContext = Depends(get_context)):
    instructions = None
    if body is not None and body.instructions is not None:
        instructions = [PayoutInstruction(**i.model_dump()) for i in body.instructions]

    executor = PayrollExecutor(ctx, run_id)
    run = _run_or_409(run_id, executor, lambda: executor.execute(instructions))
    return run.to_dict()


@router.post("/runs/{run_id}/retry")
def retry_run(run_id: str, ctx: ExecutionContext = Depends(get_context)):
    executor = PayrollExecutor(ctx, run_id)
    run = _run_or_409(run_id, executor, lambda: executor.retry_failed_payouts(run_id))
    return run.to_dict()


@router.post("/runs/{run_id}/stop")
def stop_run(run_id: str):
    with _executors_lock:
        executor = _executors.get(run_id)
    if executor is None:
        raise HTTPException(status_code=404, detail="RUN_NOT_EXECUTING")
    executor.request_stop()
    return {"ok": True, "run_id": run_id, "stop_requested": True}


@router.get("/runs/{run_id}")
def get_run(run_id: str, ctx: ExecutionContext = Depends(get_context)):
    run = ctx.store.load_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="RUN_NOT_FOUND")
    out = run.to_dict()
    out["executing"] = ctx.is_active(run_id)
    return out


@router.post("/reconcile")
def reconcile(body: Optional[ReconcileIn] = None, ctx: ExecutionContext = Depends(get_context)):
    return reconcile_submitted(ctx, run_id=body.run_id if body else None)
