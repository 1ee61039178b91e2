import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from src.config.logger_config import logger


@dataclass(frozen=True)
class RateLimitConfig:
    point_budget: int = 300_000
    window_seconds: float = 300.0
    requests_per_second: float = 4.0
    high_usage_ratio: float = 0.9
    moderate_usage_ratio: float = 0.7
    ample_usage_ratio: float = 0.3
    high_usage_delay: float = 30.0
    moderate_usage_delay: float = 2.0
    minimal_delay: float = 0.05


class RateLimiter:
    """Rolling point-budget tracker.

    ``reserve`` never blocks; it returns how long the caller should wait before
    sending the request. Upstream may still reject a request, the error policy
    handles that.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        if self.config.point_budget <= 0:
            raise ValueError("point_budget must be positive")
        if self.config.requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self._clock = clock
        self._window: deque[tuple[float, int]] = deque()

        baseline = 1.0 / self.config.requests_per_second
        self.baseline_delay = baseline
        self.minimal_delay = min(self.config.minimal_delay, baseline)
        self.moderate_delay = max(self.config.moderate_usage_delay, baseline)
        self.high_delay = max(self.config.high_usage_delay, self.moderate_delay)

    def _prune(self, now: float) -> None:
        horizon = now - self.config.window_seconds
        while self._window and self._window[0][0] <= horizon:
            self._window.popleft()

    def usage(self) -> int:
        self._prune(self._clock())
        return sum(points for _, points in self._window)

    def usage_ratio(self) -> float:
        return self.usage() / self.config.point_budget

    def delay_for_ratio(self, ratio: float) -> float:
        if ratio > self.config.high_usage_ratio:
            return self.high_delay
        if ratio > self.config.moderate_usage_ratio:
            return self.moderate_delay
        if ratio < self.config.ample_usage_ratio:
            return self.minimal_delay
        return self.baseline_delay

    def reserve(self, cost: int) -> float:
        now = self._clock()
        self._prune(now)
        ratio = sum(points for _, points in self._window) / self.config.point_budget
        delay = self.delay_for_ratio(ratio)
        if ratio > self.config.moderate_usage_ratio:
            logger.debug("Point budget {:.1%} used, delaying {:.2f}s", ratio, delay)
        self._window.append((now, max(int(cost), 0)))
        return delay
