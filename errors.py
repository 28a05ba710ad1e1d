"""
Error taxonomy for the calendar API and the FastAPI handlers that render it.

Every failure reaches the client as ``{"message": ...}`` with one of the
statuses 400, 401, 403, 404 or 500.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidTarget(ValidationError):
    default_message = "Invalid target"


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(AppError):
    # reported as a bad request, kept distinct from validation failures
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Conflict"


class AlreadyFriends(Conflict):
    default_message = "Already friends"


class DuplicateRequest(Conflict):
    default_message = "A pending friend request already exists"


class AlreadyProcessed(Conflict):
    default_message = "Request already processed"


class NotComplete(Conflict):
    default_message = "Event is not completed"


class Internal(AppError):
    pass


def _body(exc: AppError) -> dict:
    body = {"message": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    return body


async def app_error_handler(request: Request, exc: AppError):
    if isinstance(exc, Internal):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=_body(exc), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    first = errors[0] if errors else {"field": "", "message": "Invalid input"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return await app_error_handler(request, ValidationError(message, errors))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
    return await app_error_handler(request, Conflict("Already exists"))


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(PyMongoError, unexpected_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
