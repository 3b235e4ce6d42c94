"""Health polling for cluster up.

The control plane serves /healthz over HTTPS with a self-signed
certificate. After its container starts, cluster up polls that endpoint
until it answers 200; the address resolver also uses a single request as
its strongest reachability signal.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

logger = structlog.get_logger(__name__)

HEALTH_PATH = "/healthz"

AttemptCallback = Callable[[int, int, str | None], None]


@dataclass
class HealthCheckResult:
    """Outcome of waiting for the control plane."""

    healthy: bool
    attempts: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None


def health_url(master_url: str) -> str:
    return master_url.rstrip("/") + HEALTH_PATH


class HealthPoller:
    """Poll the control plane health endpoint."""

    def __init__(
        self,
        max_attempts: int = 60,
        interval_seconds: float = 2.0,
        timeout_seconds: float = 5.0,
    ):
        """Initialize health poller.

        Args:
            max_attempts: Maximum number of requests before giving up.
            interval_seconds: Pause between requests.
            timeout_seconds: Timeout for each request.
        """
        self.max_attempts = max_attempts
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds

    @staticmethod
    async def _probe(client: httpx.AsyncClient, url: str) -> str | None:
        """None when healthy, otherwise the reason it is not."""
        try:
            response = await client.get(url)
        except httpx.ConnectError:
            return "Connection refused"
        except httpx.TimeoutException:
            return "Request timeout"
        except httpx.HTTPError as e:
            return str(e) or type(e).__name__
        if response.status_code == 200:
            return None
        return f"HTTP {response.status_code}"

    async def wait_for_healthy(
        self,
        url: str,
        on_attempt: AttemptCallback | None = None,
    ) -> HealthCheckResult:
        """Poll until the server is healthy or attempts run out.

        Args:
            url: Master URL (https://<ip>:8443).
            on_attempt: Called after each failed attempt with
                (attempt, max_attempts, reason).
        """
        started = time.monotonic()
        target = health_url(url)
        reason: str | None = None

        async with httpx.AsyncClient(timeout=self.timeout_seconds, verify=False) as client:
            for attempt in range(1, self.max_attempts + 1):
                reason = await self._probe(client, target)
                if reason is None:
                    return HealthCheckResult(
                        healthy=True,
                        attempts=attempt,
                        elapsed_seconds=time.monotonic() - started,
                    )
                logger.debug("control plane not healthy yet", url=target, attempt=attempt, reason=reason)
                if on_attempt:
                    on_attempt(attempt, self.max_attempts, reason)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.interval_seconds)

        return HealthCheckResult(
            healthy=False,
            attempts=self.max_attempts,
            elapsed_seconds=time.monotonic() - started,
            error=f"server not healthy after {self.max_attempts} attempts: {reason}",
        )

    def wait_for_healthy_sync(
        self,
        url: str,
        on_attempt: AttemptCallback | None = None,
    ) -> HealthCheckResult:
        return asyncio.run(self.wait_for_healthy(url, on_attempt))

    def check_once(self, url: str) -> bool:
        """Single blocking health request."""
        try:
            with httpx.Client(timeout=self.timeout_seconds, verify=False) as client:
                return client.get(health_url(url)).status_code == 200
        except httpx.HTTPError:
            return False
