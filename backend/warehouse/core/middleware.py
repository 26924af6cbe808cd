"""
Request Middleware
Tags every request with an X-Request-ID, logs its outcome and turns
unhandled exceptions into a JSON 500.
"""
import time
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from warehouse.core.logging import generate_request_id, request_id_var, api_logger

# Liveness and readiness checks
QUIET_PATHS = ('/healthz', '/readyz')


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            return await self._handle(request, call_next, request_id, started)
        finally:
            request_id_var.reset(token)

    async def _handle(self, request: Request, call_next: Callable, request_id: str, started: float) -> Response:
        path = request.url.path
        try:
            response = await call_next(request)
        except Exception as e:
            api_logger.error(
                f"{request.method} {path} -> 500 (unhandled)",
                error=e,
                duration_ms=_elapsed_ms(started),
            )
            return JSONResponse(
                status_code=500,
                content={
                    'code': 'internal_error',
                    'detail': 'Internal server error',
                    'request_id': request_id,
                },
                headers={'X-Request-ID': request_id},
            )

        response.headers['X-Request-ID'] = request_id
        if not path.endswith(QUIET_PATHS):
            log = api_logger.info if response.status_code < 400 else api_logger.warning
            log(
                f"{request.method} {path} -> {response.status_code}",
                duration_ms=_elapsed_ms(started),
            )
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
