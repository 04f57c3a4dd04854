"""
Backend reachability tracking for the SPA.

The monitor polls /api/health/summary. When the backend looks down
(a 5xx such as 502 from the proxy, or a network error) it flips to
unavailable and starts a retry loop that re-checks every few seconds
until the backend answers again.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

HEALTH_PATH = "/api/health/summary"
HEALTH_TIMEOUT_SECONDS = 10.0
DEBOUNCE_SECONDS = 2.0
RETRY_INTERVAL_SECONDS = 5.0

UNAVAILABLE_MARKERS = (
    "502",
    "Bad Gateway",
    "Service Unavailable",
    "ECONNREFUSED",
    "Network Error",
)


def _is_server_error(status_code: Optional[int]) -> bool:
    return status_code is not None and 500 <= status_code < 600


class ServiceStatusMonitor:
    """Availability flag plus a background retry loop, run on the caller's event loop."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        retry_interval: float = RETRY_INTERVAL_SECONDS,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http = http
        self.retry_interval = retry_interval
        self.debounce_seconds = debounce_seconds
        self.clock = clock

        self.available = True
        self.last_check: Optional[datetime] = None
        self.retry_count = 0

        self._last_check_at: Optional[float] = None
        self._retrying = False
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def retrying(self) -> bool:
        return self._retrying

    def _mark(self, available: bool) -> None:
        self.available = available
        self.last_check = datetime.now(timezone.utc)

    async def check_health(self) -> bool:
        """Ping the health endpoint; calls within the debounce window reuse the last result."""
        now = self.clock()
        if self._last_check_at is not None and now - self._last_check_at < self.debounce_seconds:
            return self.available
        self._last_check_at = now

        try:
            response = await self.http.get(
                HEALTH_PATH,
                timeout=HEALTH_TIMEOUT_SECONDS,
                headers={"Cache-Control": "no-cache"},
            )
        except httpx.RequestError as e:
            logger.info("Service check failed", extra={"error": str(e)})
            self._mark(False)
            self._start_retry_loop()
            return False

        if response.is_success:
            self._mark(True)
            self._stop_retrying()
            return True

        self._mark(False)
        if _is_server_error(response.status_code):
            self._start_retry_loop()
        return False

    def handle_service_error(self, error: Any) -> bool:
        """
        Inspect a failed API call. Returns True when it means the backend is
        down, in which case the monitor goes unavailable and starts retrying.

        `error` may be a status code, an httpx exception, or any exception
        whose message names a gateway or connection failure.
        """
        if isinstance(error, int):
            down = _is_server_error(error)
        elif isinstance(error, httpx.HTTPStatusError):
            down = _is_server_error(error.response.status_code)
        elif isinstance(error, httpx.RequestError):
            down = True
        else:
            status_code = getattr(error, "status_code", None)
            message = str(error) if error is not None else ""
            down = _is_server_error(status_code) or any(m in message for m in UNAVAILABLE_MARKERS)

        if down:
            logger.info("Service error detected, marking unavailable", extra={"error": str(error)})
            self.force_unavailable()
        return down

    def force_unavailable(self) -> None:
        self._mark(False)
        self._start_retry_loop()

    def reset(self) -> None:
        """Back to available with the retry loop stopped."""
        self._mark(True)
        self._stop_retrying()

    def _start_retry_loop(self) -> None:
        if self._retrying:
            return
        self._retrying = True
        logger.info("Starting service retry loop", extra={"interval_seconds": self.retry_interval})
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_loop())

    def _stop_retrying(self) -> None:
        self.retry_count = 0
        if not self._retrying:
            return
        self._retrying = False
        task = self._retry_task
        self._retry_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _retry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.retry_interval)
            if not self._retrying:
                return
            self.retry_count += 1
            if await self.check_health():
                logger.info("Service is back online")
                return

    async def close(self) -> None:
        """Cancel the retry loop, if any, and wait for it to finish."""
        task = self._retry_task
        self._retrying = False
        self._retry_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
