"""Middleware and request gates for sensor-ingest."""
import time
import asyncio
import logging
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE
from starlette.responses import JSONResponse

from admission import AdmissionController
from errors import AdmissionRejected

logger = logging.getLogger("sensor-ingest.middleware")

SYSTEM_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")


def get_client_id(request: Request) -> str:
    """Client address: first X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    if request.client:
        return request.client.host

    return "unknown"


class RequestTracker:
    """Counts in-flight requests so shutdown can stop intake and drain."""

    def __init__(self):
        self._in_flight = 0
        self._accepting = True
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def accepting(self) -> bool:
        return self._accepting

    def enter(self) -> bool:
        if not self._accepting:
            return False
        self._in_flight += 1
        self._idle.clear()
        return True

    def exit(self) -> None:
        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._idle.set()

    async def drain(self, timeout: float) -> bool:
        """Stop accepting requests and wait for in-flight ones. Returns False on timeout."""
        self._accepting = False
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown deadline reached with {self._in_flight} request(s) still in flight")
            return False


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and refuses new work once shutdown has started."""

    def __init__(self, app, tracker: RequestTracker):
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in SYSTEM_PATHS:
            return await call_next(request)

        if not self.tracker.enter():
            return JSONResponse(
                status_code=HTTP_503_SERVICE_UNAVAILABLE,
                content={"error": "Service is shutting down"},
                headers={"Connection": "close"},
            )

        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            self.tracker.exit()
            duration_ms = (time.time() - start_time) * 1000
            logger.info(f"{request.method} {path} -> {status_code} ({duration_ms:.1f}ms)")


class RateLimitGate:
    """FastAPI dependency that runs a request through an admission controller.

    Every gated response carries the X-RateLimit-* headers; a rejection raises
    ``AdmissionRejected``, which the app turns into a 429.
    """

    def __init__(self, controller: AdmissionController):
        self.controller = controller

    async def __call__(self, request: Request, response: Response) -> None:
        client_id = get_client_id(request)
        decision = self.controller.admit(client_id)
        request.state.admission = decision

        if not decision.allowed:
            logger.debug(
                f"Rate limit [{self.controller.name}] rejected {client_id}, retry in {decision.retry_after}s"
            )
            raise AdmissionRejected(decision, self.controller.message)

        response.headers.update(rate_limit_headers(decision))


def rate_limit_headers(decision) -> dict:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": decision.reset_at_iso,
    }
    if decision.retry_after is not None:
        headers["Retry-After"] = str(decision.retry_after)
    return headers
