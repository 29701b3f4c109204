"""
Middleware for FastAPI: per-terminal request logging, latency and sale metrics.
"""
import time
import logging
from typing import Any, Callable, Dict
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from pos_engine.terminal import hash_identifier

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

TERMINAL_HEADER = "X-Terminal-ID"


def record_metric(request: Request, name: str, value: Any = 1) -> None:
    """Attach a sale metric to the request; the middleware logs it with the response"""
    request.state.metric_name = name
    request.state.metric_value = value


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Logs every terminal request and its latency.

    Terminal ids are hashed before they reach the log. Endpoints that complete
    a business event (sale finalized, sale parked, ...) call ``record_metric``
    and the metric is logged once the response is ready.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        terminal_id = request.headers.get(TERMINAL_HEADER)
        context: Dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "hashed_terminal_id": hash_identifier(terminal_id) if terminal_id else None,
        }

        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={**context, "remote_addr": request.client.host if request.client else None}
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Error: {request.method} {request.url.path}",
                extra={**context, "error": str(e), "error_type": type(e).__name__},
                exc_info=True
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Response: {request.method} {request.url.path} {response.status_code}",
            extra={**context, "status_code": response.status_code, "latency_ms": round(latency_ms, 2)}
        )

        metric_name = getattr(request.state, "metric_name", None)
        if metric_name and response.status_code < 400:
            logger.info(
                f"Metric: {metric_name}",
                extra={
                    **context,
                    "metric_name": metric_name,
                    "value": getattr(request.state, "metric_value", 1),
                    "latency_ms": round(latency_ms, 2)
                }
            )

        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"
        return response
