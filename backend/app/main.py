"""ASGI entry point for the expense approval service."""
from contextlib import asynccontextmanager
import logging

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.errors import workflow_error_handler
from app.core.config import settings
from app.core.exceptions import WorkflowError
from app.core.limiter import limiter
from app.core.logging import setup_logging
from app.middleware.request_id import RequestIdMiddleware, get_request_id

setup_logging()

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.APP_ENV,
        release=f"expense-approval-workflow@{APP_VERSION}",
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Approval service starting: env=%s fx=%s fallback_minimum=%s%% unanimous_steps=%s",
        settings.APP_ENV,
        settings.EXCHANGE_RATE_API_URL,
        settings.DEFAULT_MINIMUM_APPROVAL_PERCENT,
        settings.STEP_REQUIRES_UNANIMOUS,
    )
    yield
    logger.info("Approval service stopped")


app = FastAPI(
    title="Expense Approval Workflow",
    version=APP_VERSION,
    docs_url="/api/docs" if settings.APP_ENV != "production" else None,
    redoc_url="/api/redoc" if settings.APP_ENV != "production" else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
# Services raise typed workflow errors; the status mapping lives in one place.
app.add_exception_handler(WorkflowError, workflow_error_handler)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception: %s %s (request %s): %s",
        request.method, request.url.path, get_request_id(), exc,
        exc_info=True,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


from app.api.v1.router import api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.APP_ENV, "version": APP_VERSION}
