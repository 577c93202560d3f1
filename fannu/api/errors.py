import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fannu.domain.exceptions import (
    ConflictError,
    CreatorUnavailableError,
    FanNuError,
    InvalidSignatureError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_BY_ERROR: list[tuple[type[FanNuError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (CreatorUnavailableError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidSignatureError, status.HTTP_401_UNAUTHORIZED),
]


def error_body(code: str, message: str, details: Optional[Any] = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"error": error}


def status_for(exc: FanNuError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _field_name(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(FanNuError)
    async def domain_error_handler(request: Request, exc: FanNuError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("Unmapped domain error on %s: %s", request.url.path, exc)
        else:
            logger.info(
                "%s %s rejected: %s (%s)",
                request.method,
                request.url.path,
                exc.code,
                exc.message,
            )
        return JSONResponse(
            status_code=status_code,
            content=jsonable_encoder(error_body(exc.code, exc.message, exc.details)),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        details: dict[str, str] = {}
        for item in exc.errors():
            details.setdefault(_field_name(tuple(item.get("loc", ()))), item.get("msg", "Invalid value"))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("VALIDATION_ERROR", "Invalid request", details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict) and "code" in exc.detail:
            body = error_body(
                exc.detail["code"],
                exc.detail.get("message", ""),
                exc.detail.get("details"),
            )
        else:
            body = error_body(_code_for_status(exc.status_code), str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", "An internal server error occurred"),
        )


def _code_for_status(status_code: int) -> str:
    return {
        400: "VALIDATION_ERROR",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
    }.get(status_code, "ERROR")
