"""Turn exceptions into the API's error envelope.

Every error response has the shape ``{"error", "message", "details"}``.
Paths are redacted before logging because invite and link tokens travel
in them.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..core.logging_config import redact
from ..exceptions import DatabaseError, ErrorCode, SharingException

logger = logging.getLogger(__name__)


def _request_fields(request: Request) -> dict:
    return {"path": redact(request.url.path), "method": request.method}


async def sharing_exception_handler(request: Request, exc: SharingException) -> JSONResponse:
    """4xx log at WARNING, 5xx at ERROR."""
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "%s: %s",
        exc.error_code.value,
        exc.message,
        extra={**_request_fields(request), "status_code": exc.status_code, "details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Unhandled SQLAlchemy failures become DATABASE_ERROR without driver details."""
    logger.error("Unhandled database error", extra=_request_fields(request), exc_info=exc)
    error = DatabaseError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and parameters are a 400 VALIDATION_ERROR, same as service checks."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    logger.warning("Request validation failed", extra={**_request_fields(request), "errors": errors})
    return JSONResponse(
        status_code=400,
        content={
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": f"{first['field']}: {first['message']}" if first["field"] else first["message"],
            "details": {"errors": errors},
        },
    )
