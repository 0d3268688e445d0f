import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger()

# Polled by the platform every few seconds
_QUIET_PATHS = frozenset({"/health"})


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request. Everything logged while the request is handled
    carries its request_id, and the id is echoed back in X-Request-ID so a
    client report can be matched to the server logs. An incoming
    X-Request-ID from a proxy is reused.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
            user_id=request.headers.get("x-user-id"),
        )
        request.state.request_id = request_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception(
                "http_request_failed",
                elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e),
            )
            raise

        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if request.url.path in _QUIET_PATHS:
            emit = log.debug
        elif response.status_code >= 500:
            emit = log.error
        elif response.status_code >= 400:
            emit = log.warning
        else:
            emit = log.info
        emit("http_request", status_code=response.status_code, elapsed_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response
