"""
Middleware package for the anemia screening API.
"""

from .logging_middleware import RequestLoggingMiddleware

__all__ = [
    "RequestLoggingMiddleware",
]
