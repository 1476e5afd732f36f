"""
Sparq Safety API

FastAPI application entry point: crisis detection, escalation and
safety plans for the relationship-wellness product.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sparq_safety.api.routes import health, safety
from sparq_safety.config import settings
from sparq_safety.infra.database import (
    SqlAlchemyPersistence,
    close_db,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from sparq_safety.infra.redis import RedisClient
from sparq_safety.safety.errors import (
    AlertNotFound,
    FollowUpNotFound,
    InvalidAlertTransition,
    ValidationFailure,
)
from sparq_safety.safety.coordinator import CrisisCoordinator
from sparq_safety.safety.factory import build_coordinator


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


async def sweep_follow_ups_periodically(
    coordinator: CrisisCoordinator,
    interval_seconds: float,
) -> None:
    """Mark overdue follow-ups missed until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await coordinator.sweep_missed_follow_ups()
        except Exception as e:
            logger.error(f"Follow-up sweep failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the coordinator graph once and tears it down on shutdown.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    redis = await RedisClient.get_client(settings.redis_url)
    if redis:
        logger.info("Redis connection established")
    else:
        logger.warning("Redis unavailable - locks and monitoring flags are process-local")

    engine = None
    session_factory = None
    persistence = None
    if settings.use_database_persistence:
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)
        # Only in development - use migrations in production
        if settings.is_development:
            try:
                await init_db(engine)
                logger.info("Database tables initialized")
            except Exception as e:
                logger.warning(f"Database init skipped: {e}")
        persistence = SqlAlchemyPersistence(session_factory)

    coordinator = build_coordinator(settings, persistence=persistence, redis_client=redis)
    recovered = await coordinator.start()
    if recovered:
        logger.warning(f"Re-dispatching {recovered} pending escalations from a previous run")

    app.state.redis = redis
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.coordinator = coordinator

    sweeper = asyncio.create_task(
        sweep_follow_ups_periodically(coordinator, settings.follow_up_sweep_interval_seconds),
        name="follow-up-sweeper",
    )

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper

    await coordinator.close()
    logger.info("Escalation worker stopped")

    await RedisClient.close()

    if engine is not None:
        await close_db(engine)
        logger.info("Database connections closed")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Sparq Safety API",
    description="""
    Crisis-risk detection and escalation for a couples wellness product.

    ## Features
    - Rule-based risk detection with optional Claude second opinion
    - Severity classification that fails safe
    - Alert lifecycle with professional escalation and retries
    - Matched crisis resources and versioned safety plans
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationFailure)
async def safety_validation_handler(
    request: Request,
    exc: ValidationFailure,
) -> JSONResponse:
    """Missing user_id or text on an evaluation."""
    logger.warning(f"Evaluation rejected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.to_dict(),
        },
    )


@app.exception_handler(AlertNotFound)
async def alert_not_found_handler(
    request: Request,
    exc: AlertNotFound,
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "Alert not found",
            "detail": exc.alert_id,
        },
    )


@app.exception_handler(FollowUpNotFound)
async def follow_up_not_found_handler(
    request: Request,
    exc: FollowUpNotFound,
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "Follow-up not found",
            "detail": {"alert_id": exc.alert_id, "index": exc.index},
        },
    )


@app.exception_handler(InvalidAlertTransition)
async def invalid_transition_handler(
    request: Request,
    exc: InvalidAlertTransition,
) -> JSONResponse:
    """Status changes that would regress or reopen an alert."""
    logger.warning(str(exc))
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "Invalid alert transition",
            "detail": {
                "alert_id": exc.alert_id,
                "from": exc.from_status,
                "to": exc.to_status,
            },
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw input (which may be user text)."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(safety.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sparq_safety.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
