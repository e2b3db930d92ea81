from fastapi import APIRouter
from fastapi.responses import Response

from routes.payroll import active_run_ids
from services.metrics import render_prometheus

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics():
    body = render_prometheus(gauges={"payroll_active_runs": len(active_run_ids())})
    return Response(content=body, media_type="text/plain; version=0.0.4")
