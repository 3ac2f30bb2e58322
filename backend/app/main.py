"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap: middleware/router wiring, the event bus,
    the match change stream that feeds the settlement trigger, and the
    scheduler running the settlement reconciler.

Dependencies:
    - app.database
    - app.services.event_bus
    - app.workers.match_change_stream
    - app.workers.invitation_change_stream
    - app.workers.settlement_reconciler
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import app.database as _db
from app.config import settings
from app.database import close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.services.write_batch import BatchConflict

logger = logging.getLogger("tablekick")
scheduler = AsyncIOScheduler()


def _register_jobs() -> None:
    from app.workers.settlement_reconciler import reconcile_settlements

    if settings.SETTLEMENT_RECONCILE_ENABLED and not scheduler.get_job("settlement_reconciler"):
        scheduler.add_job(
            reconcile_settlements,
            "interval",
            id="settlement_reconciler",
            minutes=settings.SETTLEMENT_RECONCILE_MINUTES,
            replace_existing=True,
            max_instances=1,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()
    from app.services.event_bus import event_bus
    from app.services.event_handlers import register_event_handlers
    from app.workers.invitation_change_stream import invitation_change_stream
    from app.workers.match_change_stream import match_change_stream

    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
        if settings.CHANGE_STREAM_ENABLED:
            await match_change_stream.start()
            await invitation_change_stream.start()
        else:
            logger.info("Change streams disabled via config; settlement relies on the reconciler")
    else:
        logger.info("Event bus disabled via config")

    _register_jobs()
    scheduler.start()
    logger.info("Background scheduler started")

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await invitation_change_stream.stop()
    await match_change_stream.stop()
    if settings.EVENT_BUS_ENABLED:
        await event_bus.stop()
    await close_db()


app = FastAPI(
    title="TableKick",
    description="Table-soccer match tracking with Elo ratings",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Player-Id", "X-Request-ID"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.invitations import router as invitations_router
from app.routers.matches import router as matches_router
from app.routers.players import router as players_router

app.include_router(matches_router)
app.include_router(invitations_router)
app.include_router(players_router)


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid ID."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(BatchConflict)
async def batch_conflict_handler(request: Request, exc: BatchConflict):
    logger.info("Batch conflict on %s %s (%s)", request.method, request.url.path, exc.collection)
    return JSONResponse(status_code=409, content={"detail": "Concurrent update, please retry."})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check -- DB ping plus event pipeline state."""
    from app.services.event_bus import event_bus
    from app.workers.invitation_change_stream import invitation_change_stream
    from app.workers.match_change_stream import match_change_stream

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    bus = event_bus.stats()
    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "event_bus": {
            "running": bus["running"],
            "failed_total": bus["failed_total"],
            "dropped_total": bus["dropped_total"],
        },
        "change_streams": {
            worker.collection: {"running": worker.running, "delivered": worker.delivered}
            for worker in (match_change_stream, invitation_change_stream)
        },
    }
