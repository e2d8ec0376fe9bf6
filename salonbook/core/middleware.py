import re
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = structlog.get_logger("salonbook.middleware")

_PATH_IDS = re.compile(r"^/api/(staff|bookings)/(\d+)")
_PATH_ID_FIELDS = {"staff": "staff_id", "bookings": "booking_id"}


def request_context(request: Request) -> dict:
    """Log fields known before routing: tenant, actor and the ids in the path."""
    context = {
        "tenant_slug": (request.headers.get("x-tenant-slug") or "").strip().lower() or None,
        "path": request.url.path,
        "method": request.method,
    }
    acting_staff_id = (request.headers.get("x-acting-staff-id") or "").strip()
    if acting_staff_id:
        context["acting_staff_id"] = acting_staff_id
    actor = (request.headers.get("x-actor") or "").strip()
    if actor:
        context["actor"] = actor
    match = _PATH_IDS.match(request.url.path)
    if match:
        context[_PATH_ID_FIELDS[match.group(1)]] = int(match.group(2))
    return context


class RequestTracingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, **request_context(request))

        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception as exc:
            logger.error(
                "http_request_failed",
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        response.headers["X-Request-ID"] = request_id
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
