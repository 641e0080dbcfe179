"""Rejects request bodies larger than a decision could ever need."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from models.errors import ErrorType, create_error_response
from utils.logging import get_logger

logger = get_logger(__name__)

# Three long text fields plus evidence and alternatives lists
DEFAULT_MAX_SIZE = 256 * 1024


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_size: int | None = None):
        super().__init__(app)
        self.max_size = max_size or DEFAULT_MAX_SIZE

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            length = int(content_length)
            logger.warning(
                f"Request body too large: {length} bytes (max: {self.max_size})",
                extra={"path": request.url.path, "content_length": length},
            )
            return JSONResponse(
                status_code=413,
                content=create_error_response(
                    error=ErrorType.BAD_REQUEST,
                    message=f"Request body too large. Maximum size is {self.max_size // 1024}KB.",
                    status_code=413,
                    details={"max_bytes": self.max_size, "received_bytes": length},
                    path=str(request.url.path),
                ),
            )
        return await call_next(request)
