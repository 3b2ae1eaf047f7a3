from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError

from utils.exceptions import (
    FlockTrackError,
    NotFoundError,
    ValidationError,
    ConflictError,
    InvalidArgumentsError,
    ImmutabilityError,
)
from utils.logging_config import get_logger

logger = get_logger("errors")

_STATUS_BY_ERROR: list[tuple[type[FlockTrackError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidArgumentsError, 400),
    (ConflictError, 409),
    (ImmutabilityError, 409),
]


def _status_for(exc: FlockTrackError) -> int:
    for cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status_code
    return 500


def _normalize_errors(errs):
    norm = []
    for e in errs:
        e = dict(e)
        val = e.get("input")
        if isinstance(val, (bytes, bytearray)):
            e["input"] = val.decode("utf-8", errors="ignore")
        # ctx may hold the raw exception instance, which is not JSON serializable
        if "ctx" in e:
            e["ctx"] = {k: str(v) for k, v in e["ctx"].items()}
        norm.append(e)
    return norm


def install_error_handlers(app: FastAPI):
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": "validation_error", "detail": _normalize_errors(exc.errors())},
        )

    @app.exception_handler(IntegrityError)
    async def integrity_handler(request: Request, exc: IntegrityError):
        return JSONResponse(status_code=409, content={"error": "conflict", "detail": str(exc.orig)})

    @app.exception_handler(FlockTrackError)
    async def domain_handler(request: Request, exc: FlockTrackError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("request_failed", extra={"path": request.url.path, "code": exc.code}, exc_info=exc)
        return JSONResponse(status_code=status_code, content=exc.to_dict())
