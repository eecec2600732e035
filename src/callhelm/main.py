"""
FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from callhelm import __version__
from callhelm.calls.router import router as calls_router
from callhelm.calls.sweeper import OrphanSweeper
from callhelm.config import get_settings
from callhelm.shared.database import get_database_manager
from callhelm.shared.exceptions import ConflictError, NotFoundError, ValidationError
from callhelm.shared.logging import CorrelationIdMiddleware, get_logger, setup_logging
from callhelm.telephony.factory import get_telephony_provider
from callhelm.telephony.webhooks.router import router as telephony_webhooks_router

logger = get_logger(__name__)


def _advisory_lock_id(key: str) -> int:
    """Derive a stable signed bigint lock id from an arbitrary string key."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    # 63-bit positive space avoids signed bigint surprises.
    return int.from_bytes(digest, "big", signed=False) & 0x7FFF_FFFF_FFFF_FFFF


async def _sweep_loop(interval_seconds: int) -> None:
    """Run sweeps forever; a failed tick is logged and the next one still runs."""
    settings = get_settings()
    db_manager = get_database_manager()
    while True:
        try:
            async with db_manager.session() as session:
                sweeper = OrphanSweeper(
                    session,
                    initiated_after_seconds=settings.orphan_initiated_after_seconds,
                    ringing_after_seconds=settings.orphan_ringing_after_seconds,
                )
                await sweeper.sweep()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Orphan sweep tick failed")

        await asyncio.sleep(interval_seconds)


async def _sweeper_supervisor() -> None:
    """Run the sweep loop only on the process that becomes DB lock leader.

    On Postgres a session advisory lock elects one sweeper across workers
    and replicas. Other databases (SQLite in dev) have a single process
    and sweep without a lock.
    """
    settings = get_settings()
    db_manager = get_database_manager()
    interval = settings.sweeper_interval_seconds
    retry_sleep = 5

    if not db_manager.is_postgres:
        logger.info("Orphan sweeper running without leader lock", extra={"interval_seconds": interval})
        await _sweep_loop(interval)
        return

    lock_id = _advisory_lock_id(settings.sweeper_lock_key)
    logger.info(
        "Orphan sweeper supervisor starting",
        extra={"interval_seconds": interval, "lock_id": lock_id},
    )

    while True:
        try:
            # Dedicated connection used to hold the advisory lock.
            async with db_manager.engine.connect() as conn:
                res = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                acquired = bool(res.scalar())

                if not acquired:
                    logger.info(
                        "Sweeper leader lock busy; standby",
                        extra={"lock_id": lock_id, "sleep_seconds": retry_sleep},
                    )
                    await asyncio.sleep(retry_sleep)
                    continue

                logger.info("Sweeper leader lock acquired", extra={"lock_id": lock_id})
                await _sweep_loop(interval)

        except asyncio.CancelledError:
            logger.info("Orphan sweeper supervisor cancelled; stopping")
            raise
        except Exception:
            logger.exception(
                "Orphan sweeper supervisor error; retrying",
                extra={"sleep_seconds": retry_sleep},
            )
            await asyncio.sleep(retry_sleep)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    app.state.sweeper_task = None
    if settings.sweeper_enabled:
        app.state.sweeper_task = asyncio.create_task(_sweeper_supervisor())
        logger.info("Orphan sweeper enabled; background task created")

    yield

    logger.info("Shutting down application")

    sweeper_task = app.state.sweeper_task
    if sweeper_task is not None:
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass
        logger.info("Orphan sweeper background task stopped")

    await get_telephony_provider().close()
    await get_database_manager().close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="callhelm API",
        description="Call-leg status reconciliation service",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def _conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), **exc.details},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(calls_router)
    app.include_router(telephony_webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
