"""
Request correlation for logs.

Each request gets an X-Correlation-ID (the client's, or a fresh UUID4) held
in a ContextVar. Endpoints run in a copy of the middleware's context, so the
id reaches every log line of the request and every background task spawned
from it. The session user id travels the same way once the auth dependency
has resolved it, and is handed back to the middleware on `request.state`.

Plan status polls arrive every couple of seconds per open results page, so
successful GETs under POLLED_PREFIXES are logged at DEBUG.
"""
import uuid
import time
import contextvars
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from app.utils.logger import logger

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")
request_user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_user_id", default="")

POLLED_PREFIXES = ("/api/serious-plan/", "/api/coach-chat/", "/health")


def get_correlation_id() -> str:
    return correlation_id_var.get("")


def bind_user(request: Request, user_id: str) -> None:
    """Called by the auth dependency once the session user is known"""
    request_user_id_var.set(user_id)
    request.state.user_id = user_id


def _completion_level(method: str, path: str, status: int) -> int:
    if status >= 400:
        return logging.WARNING
    if method == "GET" and path.startswith(POLLED_PREFIXES):
        return logging.DEBUG
    return logging.INFO


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        correlation_id_var.set(cid)
        request_user_id_var.set("")

        start = time.monotonic()
        method = request.method
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request.failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round((time.monotonic() - start) * 1000),
                    "user_id": getattr(request.state, "user_id", ""),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise

        status = response.status_code
        logger.log(
            _completion_level(method, path, status),
            "request.completed",
            extra={
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round((time.monotonic() - start) * 1000),
                "user_id": getattr(request.state, "user_id", ""),
                "client_ip": request.client.host if request.client else "",
            }
        )

        response.headers["X-Correlation-ID"] = cid
        return response
