"""
FastAPI application main module.
Wires the durable import queue, the embedded import worker, middleware and error handling.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
import os
from contextlib import asynccontextmanager
from heartbeat_importer.api.v1 import api_router
from heartbeat_importer.config import QueueConfig, RemoteApiConfig
from heartbeat_importer.database import Base, SessionLocal, engine
from heartbeat_importer.errors import (
    InvalidTokenError,
    MissingAuthError,
    QueueConnectionError,
)
from heartbeat_importer.integrations.wakatime import WakatimeClient
from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.jobs.notifier import create_notifier
from heartbeat_importer.jobs.worker_import import ImportWorker
from heartbeat_importer.services.import_executor import ImportExecutor
from heartbeat_importer.utils import setup_logging, get_logger

setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

RUN_EMBEDDED_WORKER = os.getenv("RUN_EMBEDDED_WORKER", "true").lower() in ("1", "true", "yes")

_worker: ImportWorker | None = None

def build_queue(config: QueueConfig) -> DurableQueue:
    return DurableQueue(SessionLocal, config, create_notifier(config))

def build_executor(remote_config: RemoteApiConfig) -> ImportExecutor:
    return ImportExecutor(SessionLocal, lambda api_token: WakatimeClient(api_token, remote_config))

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, the import queue and (optionally) the embedded worker."""
    logger.info("Application startup initiated")

    global _worker
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        queue_config = QueueConfig.from_settings()
        queue = build_queue(queue_config)
        app.state.import_queue = queue  # type: ignore[attr-defined]

        if RUN_EMBEDDED_WORKER:
            _worker = ImportWorker(queue, build_executor(RemoteApiConfig.from_settings()))
            _worker.start()
            logger.info("Import queue + worker started", queue=queue_config.queue_name)
        else:
            logger.info("Embedded worker disabled; jobs are consumed by standalone workers")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _worker:
            _worker.stop(join_timeout=5)
            logger.info("Import worker stop signal sent")
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Heartbeat Importer",
    description="""
    Imports historical heartbeats from the WakaTime API as durable background jobs.

    * `POST /api/v1/import` submits an import for a day range and returns immediately.
    * `POST /api/v1/import/status` reports `JobPending`, `JobFailed` or `JobFinished`
      for the job submitted with the same parameters.

    ## Authentication
    ```
    Authorization: Bearer <your api key>
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """Attach a request ID and log request/response timing."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

def _error_response(request: Request, status_code: int, message: str, **extra) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "request_id": request_id,
            **extra,
        },
        headers=headers,
    )

@app.exception_handler(MissingAuthError)
async def missing_auth_handler(request: Request, exc: MissingAuthError):
    logger.warning("Request without credentials", url=str(request.url), request_id=getattr(request.state, "request_id", None))
    return _error_response(request, 401, str(exc))

@app.exception_handler(InvalidTokenError)
async def invalid_token_handler(request: Request, exc: InvalidTokenError):
    return _error_response(request, 401, str(exc))

@app.exception_handler(QueueConnectionError)
async def queue_connection_handler(request: Request, exc: QueueConnectionError):
    logger.error("Import queue unavailable", error=str(exc), request_id=getattr(request.state, "request_id", None))
    return _error_response(request, 503, "Import queue unavailable")

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=getattr(request.state, "request_id", None),
        url=str(request.url),
        method=request.method
    )
    return _error_response(request, 422, "Request validation failed", details=jsonable_encoder(exc.errors()))

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=getattr(request.state, "request_id", None),
        url=str(request.url),
        method=request.method
    )
    return _error_response(request, exc.status_code, str(exc.detail))

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions without leaking internals."""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=getattr(request.state, "request_id", None),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )
    return _error_response(request, 500, "Internal server error")

@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    queue = getattr(app.state, "import_queue", None)
    return {
        "status": "healthy",
        "service": "heartbeat-importer",
        "version": "1.0.0",
        "timestamp": time.time(),
        "notifier_backend": queue.notifier.snapshot().get("backend") if queue is not None else None,
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Database, queue and worker status."""
    health_status = {
        "status": "healthy",
        "service": "heartbeat-importer",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    queue = getattr(app.state, "import_queue", None)
    if queue is not None:
        try:
            health_status["checks"]["queue"] = queue.snapshot()
        except QueueConnectionError as e:
            health_status["checks"]["queue"] = f"unavailable: {e}"
            health_status["status"] = "degraded"
    health_status["checks"]["worker"] = "running" if _worker is not None and _worker.is_alive() else "not running"

    return health_status

@app.get("/", tags=["root"])
async def root():
    return {
        "message": "Heartbeat Importer API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "heartbeat_importer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["heartbeat_importer"],
        log_level="info",
        access_log=True
    )
