import asyncio
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable

from src.config.logger_config import logger

from src.wikisync.domain.errors import FatalSyncError, RateLimitedError

RATE_LIMITED = "rate_limited"
TRANSIENT = "transient"
FATAL = "fatal"


@dataclass(frozen=True)
class ErrorPolicyConfig:
    max_rate_limit_retries: int = 50
    max_retries: int = 15
    rate_limit_backoff_seconds: float = 60.0
    retry_backoff_seconds: float = 8.0
    rate_limit_amnesty_seconds: float = 60.0


@dataclass
class _ContextState:
    rate_limit_hits: deque[float] = field(default_factory=deque)
    other_errors: int = 0


class ErrorPolicy:
    """Per-context retry bookkeeping for the crawl loops ("pages", "votes", ...).

    ``handle`` sleeps the backoff for the failure kind and returns so the caller
    can retry, or raises ``FatalSyncError`` once a counter goes past its limit.
    """

    def __init__(
        self,
        config: ErrorPolicyConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ErrorPolicyConfig()
        self._clock = clock
        self._contexts: dict[str, _ContextState] = {}
        self.tallies: Counter[str] = Counter()

    def _state(self, context: str) -> _ContextState:
        return self._contexts.setdefault(context, _ContextState())

    @staticmethod
    def classify(exc: BaseException) -> str:
        if isinstance(exc, RateLimitedError):
            return RATE_LIMITED
        return TRANSIENT

    def rate_limit_count(self, context: str) -> int:
        return len(self._state(context).rate_limit_hits)

    def other_error_count(self, context: str) -> int:
        return self._state(context).other_errors

    async def handle(self, context: str, exc: BaseException) -> None:
        state = self._state(context)
        kind = self.classify(exc)
        self.tallies[kind] += 1

        if kind == RATE_LIMITED:
            state.rate_limit_hits.append(self._clock())
            count = len(state.rate_limit_hits)
            if count > self.config.max_rate_limit_retries:
                self.tallies[FATAL] += 1
                raise FatalSyncError(context, f"too many rate-limit errors ({count})", cause=exc)
            backoff = self.config.rate_limit_backoff_seconds
            logger.warning("[{}] rate limited #{}, backing off {}s", context, count, backoff)
        else:
            state.other_errors += 1
            count = state.other_errors
            if count > self.config.max_retries:
                self.tallies[FATAL] += 1
                raise FatalSyncError(context, f"too many errors ({count}): {exc}", cause=exc)
            backoff = self.config.retry_backoff_seconds
            logger.warning("[{}] request failed #{} ({}), retrying in {}s", context, count, exc, backoff)

        await asyncio.sleep(backoff)

    def record_success(self, context: str) -> None:
        state = self._state(context)
        state.other_errors = 0
        if not state.rate_limit_hits:
            return
        # 只赦免最近窗口内的 429
        horizon = self._clock() - self.config.rate_limit_amnesty_seconds
        kept = deque(hit for hit in state.rate_limit_hits if hit < horizon)
        cleared = len(state.rate_limit_hits) - len(kept)
        state.rate_limit_hits = kept
        if cleared:
            logger.debug("[{}] cleared {} recent rate-limit errors", context, cleared)

    def reset(self, context: str) -> None:
        self._contexts.pop(context, None)
