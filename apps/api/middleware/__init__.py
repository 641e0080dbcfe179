"""Middleware for the decision memory API."""

from middleware.request_id import RequestIDMiddleware
from middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "RequestIDMiddleware",
    "RequestSizeLimitMiddleware",
]
