"""
Request Logging Middleware

Captures all API calls with structured JSON logging.

Features:
- Request/response logging with timing
- Request ID tracking and correlation ID propagation
- Authenticated user tracking (set by the auth dependency)
- Upload and credential routes are logged without bodies
"""

import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from config import DEBUG
from structured_logging import (
    get_logger,
    LogContext,
    log_request,
    generate_request_id,
)

logger = get_logger("api.middleware")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request and response as structured JSON and stamps
    X-Request-ID, X-Correlation-ID and X-Process-Time on the response.
    """

    # Paths to exclude from detailed logging (to reduce noise)
    EXCLUDE_PATHS = {"/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json"}

    # Static image mounts are served without request logging
    STATIC_PREFIXES = ("/scans/", "/conjunctivas/", "/profiles/")

    # Path suffixes whose bodies carry credentials
    SENSITIVE_SUFFIXES = ("/verify-token", "/link-email-password", "/reset-password")

    def __init__(self, app: ASGIApp, log_headers: bool = False):
        super().__init__(app)
        self.log_headers = log_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        correlation_id = request.headers.get("X-Correlation-ID") or request_id

        method = request.method
        path = request.url.path
        query_params = str(request.query_params) if request.query_params else None
        client_ip = self._get_client_ip(request)

        if path in self.EXCLUDE_PATHS or path.startswith(self.STATIC_PREFIXES):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        with LogContext(
            request_id=request_id,
            correlation_id=correlation_id,
            client_ip=client_ip,
            http_method=method,
            http_path=path
        ):
            start_time = time.time()

            request_log_data = {
                "event": "request_started",
                "query_params": query_params,
                "user_agent": request.headers.get("user-agent"),
                "content_type": request.headers.get("content-type"),
                "content_length": request.headers.get("content-length"),
                "sensitive": path.endswith(self.SENSITIVE_SUFFIXES),
            }

            if self.log_headers and DEBUG:
                request_log_data["headers"] = self._get_safe_headers(request)

            logger.info("Incoming request", extra=request_log_data)

            try:
                response = await call_next(request)

                duration_ms = (time.time() - start_time) * 1000
                content_length = response.headers.get("content-length")

                log_request(
                    method=method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    request_id=request_id,
                    user_id=getattr(request.state, "user_id", None),
                    client_ip=client_ip,
                    query_params=query_params,
                    content_length=int(content_length) if content_length else None,
                )

                response.headers["X-Request-ID"] = request_id
                response.headers["X-Correlation-ID"] = correlation_id
                response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

                return response

            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000

                logger.error(
                    "Request failed with exception",
                    extra={
                        "event": "request_error",
                        "duration_ms": round(duration_ms, 2),
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True
                )
                raise

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP, handling proxies."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _get_safe_headers(self, request: Request) -> dict:
        """Get headers excluding sensitive ones."""
        sensitive_headers = {"authorization", "cookie", "x-api-key", "x-auth-token"}
        return {
            k: v for k, v in request.headers.items()
            if k.lower() not in sensitive_headers
        }
