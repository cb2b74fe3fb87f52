# core/health.py
"""HTTP health probe and the bounded poll loop that gates a rollout."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests
from loguru import logger

from core.metrics import HEALTH_POLL_COUNTER


@dataclass
class HealthReport:
    url: str
    healthy: bool
    attempts: int
    elapsed: float
    last_status: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "healthy": self.healthy,
            "attempts": self.attempts,
            "elapsed": round(self.elapsed, 3),
            "last_status": self.last_status,
            "last_error": self.last_error,
        }


def probe(
    url: str, timeout: float = 5.0, session: Optional[Any] = None
) -> Tuple[bool, Optional[int], Optional[str]]:
    """Issue one GET against ``url``.

    Returns ``(healthy, status_code, error)``. Connection failures count as an
    unhealthy probe rather than raising.
    """
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        return False, None, str(e)
    status = response.status_code
    return 200 <= status < 300, status, None


class HealthChecker:
    """Polls a health URL every ``interval`` seconds for at most ``timeout`` seconds.

    The first probe is immediate. Further probes are scheduled at fixed
    offsets from the start and only while they fall before the deadline, so a
    30s timeout with a 5s interval allows six probes. Polling stops at the
    first healthy answer.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        interval: float = 5.0,
        request_timeout: float = 5.0,
        session: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if timeout <= 0 or interval <= 0:
            raise ValueError("timeout and interval must be positive")
        self.timeout = timeout
        self.interval = interval
        self.request_timeout = request_timeout
        self.session = session
        self._clock = clock
        self._sleep = sleep

    def wait_until_healthy(self, url: str) -> HealthReport:
        start = self._clock()
        deadline = start + self.timeout
        attempts = 0
        status: Optional[int] = None
        error: Optional[str] = None

        while True:
            attempts += 1
            healthy, status, error = probe(
                url, timeout=min(self.request_timeout, self.interval), session=self.session
            )
            HEALTH_POLL_COUNTER.labels(result="healthy" if healthy else "unhealthy").inc()
            if healthy:
                elapsed = self._clock() - start
                logger.info(f"{url} healthy after {attempts} probe(s)")
                return HealthReport(url, True, attempts, elapsed, last_status=status)

            logger.debug(
                f"Probe {attempts} of {url} failed: "
                f"{error or f'HTTP {status}'}"
            )
            next_at = start + attempts * self.interval
            now = self._clock()
            if next_at >= deadline or now >= deadline:
                break
            if next_at > now:
                self._sleep(next_at - now)

        elapsed = self._clock() - start
        logger.warning(f"{url} not healthy after {attempts} probe(s) in {elapsed:.1f}s")
        return HealthReport(
            url, False, attempts, elapsed, last_status=status, last_error=error
        )
