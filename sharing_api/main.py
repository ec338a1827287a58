"""FastAPI application for resource sharing.

Importing this module configures logging, checks the database is reachable
and creates missing tables. Startup then refuses unsafe production
settings, builds the e-mail dispatcher and trims the audit trail.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .api import permissions_router, resources_router, shares_router
from .core.config import ConfigurationError, settings
from .core.logging_config import setup_logging
from .database import SessionLocal, check_connection, get_db, init_db, is_postgresql, masked_url
from .exceptions import SharingException
from .middleware.exception_handler import (
    database_exception_handler,
    request_validation_handler,
    sharing_exception_handler,
)
from .middleware.request_context import RequestContextMiddleware
from .services import audit_service
from .services.notification_service import build_dispatcher

setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"
_started = time.monotonic()

check_connection()
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical("Startup blocked: %s", e)
        raise SystemExit(1) from e
    for finding in settings.security_findings():
        logger.warning("Insecure setting (development only): %s", finding)

    if not settings.email_service_url:
        logger.warning("EMAIL_SERVICE_URL is empty; invitation e-mails are logged, not sent")
    app.state.email_dispatcher = build_dispatcher(settings)

    with SessionLocal() as db:
        purged = audit_service.purge_expired(db, settings.audit_retention_days)
    if purged:
        logger.info("Purged %d audit entries past the %d-day retention", purged, settings.audit_retention_days)

    logger.info(
        "Sharing API ready",
        extra={
            "environment": settings.environment.value,
            "database": masked_url(),
            "auth": settings.auth_enabled,
        },
    )
    yield


app = FastAPI(
    title="Resource Sharing API",
    description=(
        "Permission grants, e-mail invitations and tokenized share links for "
        "market data, CSV analyses, courses, reports and user content.\n\n"
        "**Authentication:** with `AUTH_ENABLED=true`, send a `Bearer` token from the "
        "identity provider carrying `sub` and `email` claims. Decline and share-link "
        "endpoints treat the token in the path as the credential."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Added last runs first: CORS wraps the request context middleware.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Share-Token", "X-Request-ID"],
)

app.add_exception_handler(SharingException, sharing_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)

app.include_router(resources_router)
app.include_router(permissions_router)
app.include_router(shares_router)


@app.get("/")
def root():
    return {"name": "Resource Sharing API", "version": VERSION, "status": "running"}


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Liveness probe. Reports a degraded database instead of failing."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.warning("Health check database probe failed", exc_info=True)
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "database": "postgresql" if is_postgresql() else "sqlite",
        "uptime_seconds": round(time.monotonic() - _started),
        "version": VERSION,
    }
