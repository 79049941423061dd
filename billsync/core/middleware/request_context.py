"""
Per-request context: request id, acting user, request counter and the
`request.complete` log line.

Requests are counted by route template (`/api/teams/{team_id}/seats/{member_id}`)
when a route matched, else by the id-collapsed path, so metric labels stay
bounded.
"""
import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from billsync.core.logging import request_id_ctx_var
from billsync.core.metrics import http_requests_total, normalize_path

logger = logging.getLogger("billsync")


def _route_label(request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or normalize_path(request.url.path)


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "x-request-id", actor_header: str = "x-user-id"):
        super().__init__(app)
        self.header_name = header_name
        self.actor_header = actor_header

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = int((time.perf_counter() - start) * 1000)

        response.headers[self.header_name] = rid
        route = _route_label(request)
        http_requests_total.inc({
            "method": request.method.upper(),
            "path": route,
            "status": str(response.status_code),
        })
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "actor_id": request.headers.get(self.actor_header),
                "path": route,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
