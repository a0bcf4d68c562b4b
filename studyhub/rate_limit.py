import logging
import math
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from fastapi import Request

from .errors import RateLimitExceeded

log = logging.getLogger("studyhub.rate_limit")


class RateGate:
    """Sliding-window attempt counter keyed by client address.

    State lives in this process only; several app instances each keep their own
    counts.
    """

    def __init__(
        self,
        window_seconds: float,
        max_attempts: int,
        message: str = "Too many requests",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = float(window_seconds)
        self.max_attempts = int(max_attempts)
        self.message = message
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}

    @property
    def retry_after(self) -> int:
        return math.ceil(self.window)

    def hit(self, key: str) -> None:
        now = self._clock()
        window_start = now - self.window
        attempts = self._attempts.setdefault(key, deque())
        while attempts and attempts[0] <= window_start:
            attempts.popleft()

        if len(attempts) >= self.max_attempts:
            log.warning("Rate limit hit for %s (%d attempts in %ss)", key, len(attempts), self.window)
            raise RateLimitExceeded(self.message, retry_after=self.retry_after)

        attempts.append(now)

    def attempts(self, key: str) -> int:
        return len(self._attempts.get(key, ()))

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._attempts.clear()
        else:
            self._attempts.pop(key, None)


def client_address(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def login_rate_limit(request: Request) -> None:
    request.app.state.login_gate.hit(client_address(request))


async def register_rate_limit(request: Request) -> None:
    request.app.state.register_gate.hit(client_address(request))
