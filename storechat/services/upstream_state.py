"""Upstream connection state machine.

WHAT:
    Tracks whether the next call to an external API may start now, and how
    long to wait after failures.

WHY:
    Retry timing used to be scattered through request loops as ad-hoc sleeps.
    Keeping it in one explicit machine makes the backoff policy testable with
    a fake clock and no real timers.

DESIGN:
    idle ──begin()──▶ connecting ──succeed()──▶ connected
                          │                         │
                        fail()                   begin()
                          ▼                         │
                    backoff(n) ──(delay elapsed)──▶ begin() ▶ connecting

    Backoff delay after the n-th consecutive failure:
        min(base_delay * 2 ** (n - 1), max_delay)
    A caller-supplied delay (e.g. HTTP Retry-After) overrides the formula.

REFERENCES:
    - storechat/services/shopify_client.py (drives one instance per client)
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from storechat.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    idle = "idle"
    connecting = "connecting"
    connected = "connected"
    backoff = "backoff"


@dataclass
class UpstreamConnection:
    """
    Backoff bookkeeping for one upstream.

    Attributes:
        name: Label used in logs
        clock: Monotonic clock in seconds (injectable for tests)
        base_delay: Delay after the first failure
        max_delay: Cap on any computed delay
    """

    name: str = "upstream"
    clock: Callable[[], float] = time.monotonic
    base_delay: float = 1.0
    max_delay: float = 30.0

    state: ConnectionState = field(default=ConnectionState.idle, init=False)
    failures: int = field(default=0, init=False)
    retry_at: Optional[float] = field(default=None, init=False)

    def wait_time(self) -> float:
        """Seconds until an attempt may start (0 when ready)."""
        if self.state != ConnectionState.backoff or self.retry_at is None:
            return 0.0
        return max(0.0, self.retry_at - self.clock())

    def ready(self) -> bool:
        return self.wait_time() == 0.0

    def begin(self) -> None:
        """Enter `connecting`. Raises while a backoff is still running."""
        if self.state == ConnectionState.connecting:
            raise UpstreamError(f"{self.name}: attempt already in progress")
        if not self.ready():
            raise UpstreamError(f"{self.name}: backing off for {self.wait_time():.2f}s")
        self.state = ConnectionState.connecting

    def succeed(self) -> None:
        if self.state != ConnectionState.connecting:
            raise UpstreamError(f"{self.name}: succeed() outside an attempt")
        self.state = ConnectionState.connected
        self.failures = 0
        self.retry_at = None

    def fail(self, delay: Optional[float] = None) -> float:
        """Record a failed attempt and enter backoff.

        Returns:
            The delay in seconds before the next attempt may begin.
        """
        if self.state != ConnectionState.connecting:
            raise UpstreamError(f"{self.name}: fail() outside an attempt")
        self.failures += 1
        if delay is None:
            delay = self.base_delay * 2 ** (self.failures - 1)
        delay = min(max(delay, 0.0), self.max_delay)
        self.state = ConnectionState.backoff
        self.retry_at = self.clock() + delay
        logger.debug("[UPSTREAM] %s failure #%d, backing off %.2fs", self.name, self.failures, delay)
        return delay

    def reset(self) -> None:
        self.state = ConnectionState.idle
        self.failures = 0
        self.retry_at = None
