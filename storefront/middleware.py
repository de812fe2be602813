"""
Request logging middleware. Device ids are hashed before they reach the logs.
"""
import time
import hashlib
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEVICE_HEADER = "X-Device-ID"
RESPONSE_TIME_HEADER = "X-Response-Time-Ms"


def hash_identifier(identifier: str) -> str:
    """Short stable digest of an identifier (no PII in logs)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


def _elapsed_ms(started: float) -> float:
    return round((time.time() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request and per outcome, plus a timing header"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.time()
        device_id: Optional[str] = request.headers.get(DEVICE_HEADER)
        context = {
            "method": request.method,
            "path": request.url.path,
            "hashed_device_id": hash_identifier(device_id) if device_id else None,
        }

        logger.info(
            f"{request.method} {request.url.path}",
            extra={**context, "remote_addr": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} raised {type(e).__name__}",
                extra={**context, "error": str(e), "latency_ms": _elapsed_ms(started)},
                exc_info=True,
            )
            raise

        latency_ms = _elapsed_ms(started)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({latency_ms} ms)",
            extra={**context, "status_code": response.status_code, "latency_ms": latency_ms},
        )
        response.headers[RESPONSE_TIME_HEADER] = f"{latency_ms:.2f}"
        return response
