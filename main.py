
#main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.ledger.validate import validate_ledger_startup
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payroll import router as payroll_router
from services.metrics import increment_http_requests
from services.observability import configure_logging

configure_logging(logging.INFO)
validate_ledger_startup()

app = FastAPI(title="Payroll Payout Engine", version="1.0.0")

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(payroll_router)


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    increment_http_requests(getattr(route, "path", request.url.path), response.status_code)
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logging.getLogger("payroll.api").exception("unhandled error path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
