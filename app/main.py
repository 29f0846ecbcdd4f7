from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import check_database_health, init_schema
from app.errors import (
    APIError,
    api_error_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.firebase_auth import initialize_firebase_admin, is_firebase_initialized
from app.logging_config import get_logger, setup_logging
from app.middleware import RequestContextMiddleware
from app.monitoring import setup_sentry
from app.etherith.api import router as archive_router

# Setup logging first
setup_logging(use_json=(settings.log_format.lower() == "json"))
logger = get_logger(__name__)

setup_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup checks and collaborator wiring."""
    problems = settings.validate_required()
    if problems and settings.environment == "production":
        raise ValueError(f"Configuration errors: {', '.join(problems)}")
    for problem in problems:
        logger.warning(f"Config: {problem}")

    if settings.bootstrap_schema:
        init_schema()
    initialize_firebase_admin()

    db_health = check_database_health()
    if db_health["status"] != "healthy":
        logger.error(f"Repository unreachable at startup: {db_health.get('error')}")
    logger.info(
        "Archive API started",
        extra={"environment": settings.environment, "content_store": _content_store_backend()},
    )
    yield


app = FastAPI(
    title="Etherith Archive API",
    version="0.1.0",
    description="""
    Etherith Archive API - content-addressed archival of cultural artifacts
    with tiered access control.

    ## Features

    * **Archival**: Artifacts are pinned to a content-addressed store; records are write-once for id, owner and content hash
    * **Access tiers**: public, community (members of an associated community), private (owner only)
    * **Uniform denials**: Private and nonexistent artifacts are indistinguishable to unauthorized callers
    * **Audit Logging**: Writes, reads, updates and orphaned uploads are written to audit_events

    ## Error Responses

    ```json
    {
      "error": {
        "code": "ERROR_CODE",
        "message": "Human-readable message",
        "request_id": "uuid",
        "timestamp": "ISO8601",
        "details": {},
        "hint": "Recovery suggestion"
      }
    }
    ```
    """,
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(archive_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=settings.get_cors_headers(),
)


def _content_store_backend() -> str:
    return "pinata" if settings.pinata_jwt else "in_memory"


@app.get("/healthz")
def healthcheck():
    """Overall status with database connectivity and content store backend."""
    db_health = check_database_health()
    return {
        "status": "ok" if db_health["status"] == "healthy" else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": app.version,
        "environment": settings.environment,
        "database": db_health,
        "content_store": {"backend": _content_store_backend()},
        "auth": {"firebase_initialized": is_firebase_initialized()},
    }


@app.get("/healthz/ready")
def readiness_check():
    """200 once the repository answers; 503 otherwise."""
    if check_database_health()["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Repository not available",
        )
    return {"status": "ready"}


@app.get("/healthz/live")
def liveness_check():
    return {"status": "alive"}
