"""
Middleware components for request processing.

This package contains middleware for:
- Request context (request ID bound into logs and response headers)
"""

from mailrelay.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
]
