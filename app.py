#!/usr/bin/env python3

"""
Trade Ledger web API
Reconciles brokerage transactions into positions, strategies and cash.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from tradeledger.dependencies import db, settings
from tradeledger.errors import ReconciliationError
from tradeledger.logging_setup import configure_logging
from tradeledger.routers import health, ledger, reconcile


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging and the database on startup"""
    configure_logging(settings, name="webapp")
    logger.info("Starting Trade Ledger API")
    db.initialize_database()
    yield
    db.dispose()


app = FastAPI(
    title="Trade Ledger",
    description="Transaction reconciliation for a personal trading journal",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.message, "context": exc.context},
    )


@app.exception_handler(TimeoutError)
async def busy_handler(request: Request, exc: TimeoutError):
    return JSONResponse(status_code=409, content={"error": "Busy", "detail": str(exc)})


app.include_router(health.router)
app.include_router(reconcile.router)
app.include_router(ledger.router)


if __name__ == "__main__":
    logger.info("Starting Trade Ledger on http://localhost:8000")
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
