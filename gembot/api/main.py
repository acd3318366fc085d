"""
gembot.api.main — FastAPI application entry point
==================================================

Run with::

    uvicorn gembot.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from gembot.api.deps import get_database  # noqa: E402
from gembot.api.routes.admin import router as admin_router  # noqa: E402
from gembot.api.routes.public import router as public_router  # noqa: E402
from gembot.errors import (  # noqa: E402
    DailyLimitExceeded,
    InsufficientFunds,
    InvalidInput,
    LedgerError,
    PartialTransferFailure,
    StorageUnavailable,
    TransferLimitExceeded,
)

logger = logging.getLogger(__name__)

# Most specific first; SameAccount is an InvalidInput.
ERROR_STATUS: list[tuple[type[LedgerError], int]] = [
    (InvalidInput, 400),
    (InsufficientFunds, 409),
    (DailyLimitExceeded, 409),
    (TransferLimitExceeded, 409),
    (StorageUnavailable, 503),
    (PartialTransferFailure, 500),
]


def status_for(exc: LedgerError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — open the database, dispose it on exit."""
    db = get_database()
    logger.info("GemBot API started — engine ready (%s)", db.engine.url.database)
    yield
    db.close()
    logger.info("GemBot API shutting down")


app = FastAPI(
    title="GemBot Ledger API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


# Mount routers
app.include_router(public_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
