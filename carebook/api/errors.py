import enum
import math
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..utils.logging_utils import setup_logger

logger = setup_logger(__name__)


class ErrorCode(str, enum.Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


class ApiError(HTTPException):
    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.details = details


def unauthorized(message: str = "Authentication required") -> ApiError:
    return ApiError(401, ErrorCode.UNAUTHORIZED, message)


def forbidden(message: str) -> ApiError:
    return ApiError(403, ErrorCode.FORBIDDEN, message)


def not_found(what: str) -> ApiError:
    return ApiError(404, ErrorCode.NOT_FOUND, f"{what} not found")


def conflict(message: str) -> ApiError:
    return ApiError(409, ErrorCode.CONFLICT, message)


def invalid(message: str, details: Optional[Dict[str, Any]] = None) -> ApiError:
    return ApiError(422, ErrorCode.VALIDATION_ERROR, message, details)


# -------- response envelopes --------


def error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def paginated(items: list, page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    body = ok(items)
    body["meta"] = {
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        }
    }
    return body


# -------- handlers --------


def install_error_handlers(app: FastAPI, expose_details: bool) -> None:
    def _details(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        return details if expose_details else None

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return ORJSONResponse(
            error_body(exc.code.value, exc.message, _details(exc.details)),
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        return ORJSONResponse(
            error_body(code.value, str(exc.detail)),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    # query models built through Depends() validate on construction
    @app.exception_handler(ValidationError)
    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc):
        fields = [".".join(str(p) for p in e.get("loc", ())) for e in exc.errors()]
        return ORJSONResponse(
            error_body(
                ErrorCode.VALIDATION_ERROR.value,
                "Invalid request",
                {"fields": fields},
            ),
            status_code=422,
        )

    @app.exception_handler(IntegrityError)
    async def _integrity_error(request: Request, exc: IntegrityError):
        logger.info("Constraint violation on %s %s: %s", request.method, request.url.path, exc.orig)
        return ORJSONResponse(
            error_body(
                ErrorCode.CONFLICT.value,
                "Request conflicts with existing data",
                _details({"reason": str(exc.orig)}),
            ),
            status_code=409,
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return ORJSONResponse(
            error_body(
                ErrorCode.INTERNAL_ERROR.value,
                "Internal Server Error",
                _details({"exception": repr(exc)}),
            ),
            status_code=500,
        )
