"""
Request validation middleware for Order Service.
Assigns the request correlation id and rejects oversized, mistyped or
malformed requests before they reach the routers.
"""

import json
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ...utils.logging import setup_order_logging

logger = setup_order_logging("order_service.validation")

CORRELATION_HEADERS = ("X-Correlation-ID", "correlation-id", "x-request-id")
DEFAULT_EXCLUDE_PATHS = ["/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"]
DEFAULT_CONTENT_TYPES = ["application/json"]


class OrderServiceRequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Request validation for Order Service.

    Every request gets a correlation id (taken from the incoming headers or
    generated) stored on ``request.state`` and echoed in the
    ``X-Correlation-ID`` response header.
    """

    def __init__(
        self,
        app: Any,
        max_request_size: int = 1024 * 1024,
        allowed_content_types: Optional[List[str]] = None,
        exclude_paths: Optional[List[str]] = None,
        max_json_depth: int = 10,
        max_array_size: int = 1000,
    ):
        super().__init__(app)
        self.max_request_size = max_request_size
        self.allowed_content_types = allowed_content_types or DEFAULT_CONTENT_TYPES
        self.exclude_paths = (
            DEFAULT_EXCLUDE_PATHS if exclude_paths is None else exclude_paths
        )
        self.max_json_depth = max_json_depth
        self.max_array_size = max_array_size

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = self._assign_correlation_id(request)

        if not self._should_skip_validation(request.url.path):
            error = await self._validate(request)
            if error is not None:
                message, status_code = error
                return self._create_validation_error_response(
                    request, correlation_id, message, status_code
                )

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @staticmethod
    def _assign_correlation_id(request: Request) -> str:
        correlation_id = next(
            (
                request.headers[header]
                for header in CORRELATION_HEADERS
                if request.headers.get(header)
            ),
            None,
        )
        correlation_id = correlation_id or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        return correlation_id

    def _should_skip_validation(self, path: str) -> bool:
        return any(path.startswith(exclude) for exclude in self.exclude_paths)

    async def _validate(self, request: Request) -> Optional[tuple]:
        """Return ``(message, status_code)`` for the first failed check"""
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > self.max_request_size:
                return (
                    f"Request size {content_length} exceeds limit {self.max_request_size}",
                    413,
                )

        if request.method not in ("POST", "PUT", "PATCH"):
            return None

        body = await request.body()
        if len(body) > self.max_request_size:
            return (
                f"Request body size {len(body)} exceeds limit {self.max_request_size}",
                413,
            )
        if not body:
            return None

        content_type = request.headers.get("content-type", "").lower()
        if not any(content_type.startswith(allowed) for allowed in self.allowed_content_types):
            return (
                f"Content-Type '{content_type}' is not allowed. "
                f"Allowed types: {self.allowed_content_types}",
                415,
            )

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return f"Invalid JSON: {e}", 400

        security = self._validate_json_security(data)
        if not security["valid"]:
            return security["error"], 400
        return None

    def _validate_json_security(self, data: Any) -> Dict[str, Any]:
        if self._get_json_depth(data) > self.max_json_depth:
            return {
                "valid": False,
                "error": f"JSON object too deeply nested (max depth: {self.max_json_depth})",
            }
        if self._has_large_array(data):
            return {
                "valid": False,
                "error": f"JSON contains array larger than {self.max_array_size} elements",
            }
        return {"valid": True}

    def _get_json_depth(self, obj: Any, current_depth: int = 0) -> int:
        if current_depth > self.max_json_depth:
            return current_depth
        if isinstance(obj, dict):
            children = obj.values()
        elif isinstance(obj, list):
            children = obj
        else:
            return current_depth
        return max(
            (self._get_json_depth(child, current_depth + 1) for child in children),
            default=current_depth,
        )

    def _has_large_array(self, obj: Any) -> bool:
        if isinstance(obj, list):
            return len(obj) > self.max_array_size or any(
                self._has_large_array(item) for item in obj
            )
        if isinstance(obj, dict):
            return any(self._has_large_array(value) for value in obj.values())
        return False

    def _create_validation_error_response(
        self,
        request: Request,
        correlation_id: str,
        error_message: str,
        status_code: int,
    ) -> Response:
        logger.warning(
            f"Request validation failed: {error_message}",
            extra={
                "correlation_id": correlation_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "content_type": request.headers.get("content-type", "unknown"),
            },
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": {
                    "type": "validation_error",
                    "message": error_message,
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "method": request.method,
                }
            },
            headers={"X-Correlation-ID": correlation_id},
        )


def setup_order_request_validation_middleware(
    app: FastAPI,
    max_request_size: int = 1024 * 1024,
    allowed_content_types: Optional[List[str]] = None,
    exclude_paths: Optional[List[str]] = None,
) -> None:
    """Add the request validation middleware to ``app``"""
    app.add_middleware(
        OrderServiceRequestValidationMiddleware,
        max_request_size=max_request_size,
        allowed_content_types=allowed_content_types,
        exclude_paths=exclude_paths,
    )
    logger.info(
        "Request validation middleware configured",
        extra={
            "max_request_size": max_request_size,
            "allowed_content_types": allowed_content_types or DEFAULT_CONTENT_TYPES,
        },
    )
