"""Fixed-window admission control keyed by client address."""
import math
import time
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional

logger = logging.getLogger("sensor-ingest.admission")


@dataclass
class ClientQuotaState:
    """Requests seen for one client in its current window."""
    count: int
    reset_at: float


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()


class AdmissionController:
    """Per-client fixed-window request counter.

    Each instance owns its own quota map, so a strict endpoint and a general
    endpoint configured with different limits never share state.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 100,
        message: str = "Too many requests, please try again later",
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
        name: str = "default",
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")

        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.message = message
        self.sweep_interval = sweep_interval
        self.name = name
        self._clock = clock
        self._lock = Lock()
        self._clients: Dict[str, ClientQuotaState] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._sweep_task: Optional[asyncio.Task] = None

    def admit(self, client_id: str) -> AdmissionDecision:
        """Count one request for ``client_id`` and decide whether it may proceed."""
        with self._lock:
            now = self._clock()
            state = self._clients.get(client_id)

            if state is None or now >= state.reset_at:
                state = ClientQuotaState(count=1, reset_at=now + self.window_seconds)
                self._clients[client_id] = state
                return AdmissionDecision(
                    allowed=True,
                    limit=self.max_requests,
                    remaining=self.max_requests - 1,
                    reset_at=state.reset_at,
                )

            if state.count >= self.max_requests:
                # Rejections never touch the stored state.
                return AdmissionDecision(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=state.reset_at,
                    retry_after=max(1, math.ceil(state.reset_at - now)),
                )

            state.count += 1
            return AdmissionDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - state.count,
                reset_at=state.reset_at,
            )

    def get_state(self, client_id: str) -> Optional[ClientQuotaState]:
        """Return the live quota state for a client, or None if absent or expired."""
        with self._lock:
            state = self._clients.get(client_id)
            if state is None or self._clock() >= state.reset_at:
                return None
            return ClientQuotaState(count=state.count, reset_at=state.reset_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, state in self._clients.items() if now >= state.reset_at]
            for key in expired:
                del self._clients[key]

        if expired:
            logger.debug(f"Admission sweep [{self.name}] removed {len(expired)} expired entries")
        return len(expired)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._stop_event = asyncio.Event()
        self._sweep_task = asyncio.create_task(
            self._sweep_loop(self._stop_event), name=f"admission-sweep-{self.name}"
        )

    async def _sweep_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                self.sweep()

    async def close(self) -> None:
        """Cancel the sweep and clear all quota state."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._sweep_task is not None:
            try:
                await self._sweep_task
            finally:
                self._sweep_task = None
                self._stop_event = None
        with self._lock:
            self._clients.clear()

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()
