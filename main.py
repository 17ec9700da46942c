"""
Spendgate - FastAPI Backend

Spend-approval administration for connected business accounts.

Run Instructions:
-----------------
1. Install the package:
   pip install -e .

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health

4. Fetch the approval matrix:
   curl http://localhost:8000/api/project-approvals
"""
import os
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from spendgate.api import (
    accounts_router,
    approval_rules_router,
    project_approvals_router,
    projects_router,
)
from spendgate.core.database import get_db
from spendgate.services.errors import SpendgateError
from spendgate.services.logging import log_error, log_request, logger
from spendgate.services.metrics import get_metrics, record_error, record_request

app = FastAPI(
    title="Spendgate API",
    description="""
    Spendgate API - Spend approval policies for client projects

    ## Approval rules
    - Global rules map amount ranges to an approver role (manager, director, client owner)
    - Project rules override global rules for one project
    - Upserts are keyed on scope + amount range

    ## Approval matrix
    - Every project evaluated at the same amount breakpoints
    - Each cell shows the approver, "no rule", or "approver unresolved"

    ## Authentication
    API key authentication is optional. Set `API_KEY` environment variable to enable.
    When enabled, include `X-API-Key` header in requests.
    """,
    version="1.0.0",
)

app.include_router(approval_rules_router)
app.include_router(project_approvals_router)
app.include_router(projects_router)
app.include_router(accounts_router)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and record metrics."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_id = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            record_error("exception", request.url.path)
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_id=client_id,
        )
        record_request(request.method, request.url.path, response.status_code, duration_ms)
        if response.status_code >= 400:
            record_error(f"http_{response.status_code}", request.url.path)
        return response


app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SpendgateError)
async def spendgate_exception_handler(request: Request, exc: SpendgateError):
    """Handle all SpendgateErrors with structured responses."""
    log_error(
        exc.code.value,
        str(exc),
        {"path": request.url.path, "method": request.method, **exc.context},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed payloads are client errors; nothing is written."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "INVALID_REQUEST",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with a structured response."""
    log_error(
        "unhandled_exception",
        str(exc),
        {"path": request.url.path, "method": request.method},
        exception=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again or contact support.",
        },
    )


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    get_db().initialize()
    logger.info("Spendgate API started")


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics")
def metrics():
    return get_metrics()
