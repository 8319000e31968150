"""sensor-ingest: HTTP service for ingesting, querying and generating sensor readings."""
import time
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings as default_settings, get_environment_info
from db import Database
from admission import AdmissionController
from errors import (
    AdmissionRejected,
    SchemaValidationError,
    StorageUnavailableError,
    StorageWriteError,
)
from generator import RecordGenerator
from ingestion import IngestionService
from middleware import RateLimitGate, RequestLoggingMiddleware, RequestTracker, rate_limit_headers
from records import DEFAULT_PAGE_SIZE, RecordQueries
from schemas import GENERATE_SCHEMA, RECORD_SCHEMA, RECORDS_QUERY_SCHEMA
from validation import validated_body, validated_query

VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if default_settings.DEBUG else getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("sensor-ingest")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _field_or_default(payload: dict, key: str, default: int):
    # An explicit null counts as absent.
    value = payload.get(key)
    return default if value is None else value


def _admission_headers(request: Request) -> dict:
    """Rate-limit headers for a request that already passed an admission gate."""
    decision = getattr(request.state, "admission", None)
    return rate_limit_headers(decision) if decision is not None else {}


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    generator: Optional[RecordGenerator] = None,
) -> FastAPI:
    """Build the application with its own admission, storage and ingestion components."""
    settings = settings or default_settings
    database = database or Database(settings)

    app = FastAPI(
        title="sensor-ingest",
        description="Sensor reading ingestion with admission control and resilient storage",
        version=VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None
    )

    general_limiter = AdmissionController(
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_requests=settings.RATE_LIMIT_GENERAL,
        message="Too many requests, please try again later",
        sweep_interval=settings.RATE_LIMIT_SWEEP_INTERVAL,
        name="general",
    )
    strict_limiter = AdmissionController(
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        max_requests=settings.RATE_LIMIT_STRICT,
        message="Rate limit exceeded for this resource",
        sweep_interval=settings.RATE_LIMIT_SWEEP_INTERVAL,
        name="strict",
    )
    general_gate = RateLimitGate(general_limiter)
    strict_gate = RateLimitGate(strict_limiter)
    tracker = RequestTracker()

    app.state.settings = settings
    app.state.db = database
    app.state.limiters = (general_limiter, strict_limiter)
    app.state.tracker = tracker
    app.state.ingestion = IngestionService(database, generator)
    app.state.queries = RecordQueries(database)
    app.state.started_at = time.time()

    # Exception handlers
    @app.exception_handler(AdmissionRejected)
    async def admission_exception_handler(request: Request, exc: AdmissionRejected):
        return JSONResponse(
            status_code=429,
            content={"error": exc.message, "retryAfter": exc.decision.retry_after},
            headers=rate_limit_headers(exc.decision),
        )

    @app.exception_handler(SchemaValidationError)
    async def validation_exception_handler(request: Request, exc: SchemaValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation failed",
                "details": exc.errors,
                "timestamp": _now()
            },
            headers=_admission_headers(request),
        )

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
        logger.error(f"Storage unavailable for {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={
                "error": "Storage unavailable",
                "message": str(exc),
                "timestamp": _now()
            },
            headers=_admission_headers(request),
        )

    @app.exception_handler(StorageWriteError)
    async def storage_write_handler(request: Request, exc: StorageWriteError):
        return JSONResponse(
            status_code=500,
            content={
                "error": "Storage write failed",
                "message": str(exc),
                "timestamp": _now()
            },
            headers=_admission_headers(request),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            content = {"error": "Route not found", "path": request.url.path}
        else:
            content = {"error": "HTTP error", "message": exc.detail, "timestamp": _now()}
        headers = {**_admission_headers(request), **(getattr(exc, "headers", None) or {})}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "timestamp": _now()
            }
        )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, tracker=tracker)

    @app.on_event("startup")
    async def startup_event():
        """Connect to storage (fatal on failure) and start the admission sweeps."""
        logger.info("Starting sensor-ingest service initialization...")
        startup_start_time = time.time()

        await database.connect()
        for limiter in app.state.limiters:
            limiter.start()

        logger.info(f"sensor-ingest started (startup time: {time.time() - startup_start_time:.2f}s)")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop intake, drain in-flight requests, then release resources."""
        logger.info("Shutting down sensor-ingest service...")

        drained = await tracker.drain(settings.SHUTDOWN_TIMEOUT)
        for limiter in app.state.limiters:
            await limiter.close()
        await database.disconnect()

        if drained:
            logger.info("sensor-ingest service shutdown completed")
        else:
            logger.warning("sensor-ingest service shutdown forced after timeout")

    # Data endpoints
    @app.post("/api/data/ingest", status_code=201, tags=["Data"], dependencies=[Depends(general_gate)])
    async def ingest_data(
        payload=Depends(validated_body(RECORD_SCHEMA, allow_list=True, max_items=settings.INGEST_MAX_BATCH)),
    ):
        """Ingest one record or a list of records; failures are reported per record."""
        result = await app.state.ingestion.ingest(payload)
        return result.to_response()

    @app.get("/api/data/records", tags=["Data"], dependencies=[Depends(general_gate)])
    async def get_records(params=Depends(validated_query(RECORDS_QUERY_SCHEMA))):
        """List records with pagination, status filter and sorting."""
        page = await app.state.queries.list_records(
            page=int(params.get("page", 1)),
            limit=int(params.get("limit", DEFAULT_PAGE_SIZE)),
            status=params.get("status"),
            sort_by=params.get("sortBy", "timestamp"),
            order=params.get("order", "desc"),
        )
        return page.model_dump()

    @app.post("/api/data/generate", status_code=201, tags=["Data"], dependencies=[Depends(strict_gate)])
    async def generate_test_data(payload=Depends(validated_body(GENERATE_SCHEMA))):
        """Generate synthetic records in unordered bulk chunks."""
        result = await app.state.ingestion.generate(
            count=int(_field_or_default(payload, "count", 5000)),
            batch_size=int(_field_or_default(payload, "batchSize", 1000)),
        )
        return {"message": "Test data generated successfully", **result.model_dump(by_alias=True)}

    @app.get("/api/data/stats", tags=["Data"], dependencies=[Depends(general_gate)])
    async def get_stats():
        """Totals, counts per status and average readings."""
        stats = await app.state.queries.stats()
        return stats.model_dump(by_alias=True)

    @app.delete("/api/data/records", tags=["Data"], dependencies=[Depends(strict_gate)])
    async def delete_all_records():
        """Delete every record."""
        result = await app.state.queries.delete_all()
        return result.model_dump(by_alias=True)

    # System endpoints
    @app.get("/health", tags=["System"])
    async def health_check():
        """Service and storage health."""
        db_health = await database.health_check()
        status = "healthy" if db_health["database_connected"] else "degraded"
        return {
            "status": status,
            "timestamp": _now(),
            "version": VERSION,
            "uptimeSeconds": round(time.time() - app.state.started_at, 2),
            "database": db_health,
            "inFlightRequests": tracker.in_flight,
            "environment": get_environment_info(),
        }

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "message": "Real-Time Data Processing API",
            "version": VERSION,
            "endpoints": {
                "health": "/health",
                "ingest": "POST /api/data/ingest",
                "records": "GET|DELETE /api/data/records",
                "generate": "POST /api/data/generate",
                "stats": "GET /api/data/stats",
            },
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        timeout_graceful_shutdown=int(default_settings.SHUTDOWN_TIMEOUT),
        log_level="debug" if default_settings.DEBUG else "info",
    )
