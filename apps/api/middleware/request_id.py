"""Request and session correlation for log lines.

Each request gets an id (from X-Request-ID or a fresh UUID) stored in
request.state.request_id and echoed back in the response. Callers that work
in named sessions, such as the MCP server, send X-Session-ID so every log
line written while serving the request carries it.
"""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from utils.logging import clear_request_context, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
SESSION_ID_HEADER = "X-Session-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        session_id = request.headers.get(SESSION_ID_HEADER) or None

        request.state.request_id = request_id
        set_request_context(request_id=request_id, session_id=session_id)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()
