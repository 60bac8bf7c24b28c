"""
Error handling for the API

Services raise APIError subclasses; the handlers registered here turn them
(and validation, database and unexpected errors) into JSON bodies of the form

    {"error": <code>, "message": <text>, "path": <request path>}

Entitlement rejections also carry the name of the failed ``check``.
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for API exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR"
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)

    def body(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class NotFoundError(APIError):
    """Resource not found"""

    def __init__(self, message: str = "Resource not found", resource_type: str = "resource"):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND"
        )
        self.resource_type = resource_type


class ValidationError(APIError):
    """Business-rule validation failure (400)"""

    def __init__(self, message: str = "Validation error"):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR"
        )


class DatabaseError(APIError):
    """A write that had to be rolled back"""

    def __init__(self, message: str = "Database error occurred"):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="DATABASE_ERROR"
        )


class AuthorizationError(APIError):
    """Caller may not act on this resource"""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="AUTHORIZATION_ERROR"
        )


class EntitlementError(APIError):
    """Action not allowed by the caller's subscription plan"""

    def __init__(self, message: str, check: str = "plan"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ENTITLEMENT_DENIED"
        )
        self.check = check

    def body(self) -> dict:
        return {**super().body(), "check": self.check}


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={**content, "path": request.url.path})


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API exceptions"""
    extra = {
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "path": request.url.path
    }

    # Plan rejections and other 4xx are expected outcomes, not faults
    if isinstance(exc, EntitlementError):
        logger.info(f"Entitlement denied ({exc.check}): {exc.message}", extra=extra)
    elif exc.status_code < 500:
        logger.warning(f"API error: {exc.error_code} - {exc.message}", extra=extra)
    else:
        logger.error(f"API error: {exc.error_code} - {exc.message}", extra=extra)

    return _error_response(request, exc.status_code, exc.body())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body/query validation errors"""
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}", extra={"path": request.url.path})

    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, {
        "error": "VALIDATION_ERROR",
        "message": "Request validation failed",
        "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
    })


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    logger.error(f"Database error: {str(exc)}", extra={"path": request.url.path}, exc_info=True)

    if isinstance(exc, IntegrityError):
        return _error_response(request, status.HTTP_409_CONFLICT, {
            "error": "INTEGRITY_ERROR",
            "message": "Database integrity constraint violated",
        })
    if isinstance(exc, OperationalError):
        return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, {
            "error": "DATABASE_UNAVAILABLE",
            "message": "Database is currently unavailable",
        })
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, {
        "error": "DATABASE_ERROR",
        "message": "An unexpected database error occurred",
    })


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {str(exc)}", extra={"path": request.url.path}, exc_info=True)

    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, {
        "error": "INTERNAL_ERROR",
        "message": "An unexpected error occurred",
    })


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    logger.info("Error handlers registered")
