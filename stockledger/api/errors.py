"""
API Error Handlers - every failure answers {"error": message} with 400, 404 or 500
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from stockledger.core.exceptions import (
    ConcurrentUpdateError, ConservationError, LedgerError, SchemaError,
    SourceAlreadyAppliedError, SummaryFinalizedError, SummaryNotFoundError,
    UnknownGradeOrStrategy,
)

logger = logging.getLogger(__name__)

# Most specific first; SourceAlreadyAppliedError is a ConcurrentUpdateError
STATUS_CODES = (
    (SchemaError, 400),
    (SourceAlreadyAppliedError, 400),
    (SummaryFinalizedError, 400),
    (SummaryNotFoundError, 404),
    (UnknownGradeOrStrategy, 500),
    (ConcurrentUpdateError, 500),
    (ConservationError, 500),
)


def status_for(exc: LedgerError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return error_response(status_code, str(exc))


async def http_error_handler(request: Request, exc: HTTPException):
    if exc.status_code == 404:
        status_code = 404
    else:
        status_code = 400 if exc.status_code < 500 else 500
    return error_response(status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return error_response(400, "; ".join(messages) or "Invalid request")


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "An internal server error occurred.")


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
