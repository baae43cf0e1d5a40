"""
Error handling middleware for Order Service.
Maps typed service failures, HTTP errors and validation failures onto one
JSON error envelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.exceptions import OrderServiceError
from ...utils.logging import setup_order_logging

logger = setup_order_logging("order_service.error_handler")


def _validation_details(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in errors
    ]


class OrderServiceErrorHandler:
    """
    Centralized error handling for Order Service.

    Every error response has the shape
    ``{"error": {type, message, correlation_id, timestamp, path, method, details}}``.
    """

    @staticmethod
    def setup_error_handlers(app: FastAPI) -> None:
        @app.exception_handler(OrderServiceError)
        async def order_service_error_handler(
            request: Request, exc: OrderServiceError
        ) -> JSONResponse:
            """Typed failures raised by services."""
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                error_type=exc.error_type,
                message=exc.message,
                details=exc.details,
            )

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                error_type="http_error",
                message=str(exc.detail),
            )

        @app.exception_handler(RequestValidationError)
        async def validation_exception_handler(
            request: Request, exc: RequestValidationError
        ) -> JSONResponse:
            """Request body, query or header did not match its schema."""
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=422,
                error_type="validation_error",
                message="Request validation failed",
                details={"validation_errors": _validation_details(exc.errors())},
            )

        @app.exception_handler(PydanticValidationError)
        async def pydantic_validation_exception_handler(
            request: Request, exc: PydanticValidationError
        ) -> JSONResponse:
            """Model validation failing inside business logic."""
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=400,
                error_type="data_validation_error",
                message="Data validation failed",
                details={"validation_errors": _validation_details(exc.errors())},
            )

        @app.exception_handler(SQLAlchemyError)
        async def store_error_handler(
            request: Request, exc: SQLAlchemyError
        ) -> JSONResponse:
            logger.error(
                "Unhandled store failure",
                extra={
                    "correlation_id": getattr(request.state, "correlation_id", None),
                    "path": request.url.path,
                    "exception_type": type(exc).__name__,
                },
            )
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=503,
                error_type="store_unavailable",
                message="Backing store is temporarily unavailable",
            )

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(
            request: Request, exc: Exception
        ) -> JSONResponse:
            logger.error(
                "Unhandled exception occurred",
                extra={
                    "correlation_id": getattr(request.state, "correlation_id", None),
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                },
                exc_info=exc,
            )
            return OrderServiceErrorHandler._create_error_response(
                request=request,
                status_code=500,
                error_type="internal_server_error",
                message="An internal server error occurred",
                details={"exception_type": type(exc).__name__},
            )

    @staticmethod
    def _create_error_response(
        request: Request,
        status_code: int,
        error_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", None)

        error_response: Dict[str, Any] = {
            "error": {
                "type": error_type,
                "message": message,
                "correlation_id": correlation_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "path": request.url.path,
                "method": request.method,
            }
        }
        if details:
            error_response["error"]["details"] = details

        if status_code < 500:
            logger.warning(
                f"Client error: {error_type}",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": status_code,
                    "error_type": error_type,
                    "path": request.url.path,
                    "method": request.method,
                },
            )

        headers = {"X-Correlation-ID": correlation_id} if correlation_id else None
        return JSONResponse(
            status_code=status_code, content=error_response, headers=headers
        )


def setup_order_error_handling(app: FastAPI) -> None:
    """Register the Order Service exception handlers on ``app``"""
    OrderServiceErrorHandler.setup_error_handlers(app)
    logger.info("Order Service error handling configured")
