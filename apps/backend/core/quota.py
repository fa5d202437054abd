"""
Daily call quota and global concurrency permit for provider calls.

Both objects are created once per process and passed into the invoker.
QuotaState is guarded by a threading lock so that orchestrators on different
threads/event loops share one counter; ConcurrencyGate wraps an asyncio
semaphore for the event loop that runs the pipeline.
"""
import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now().date()


class QuotaState:
    """
    Daily call counter for one provider.

    A slot is reserved before the network call and committed only when the
    call succeeds, so concurrent callers cannot overshoot the ceiling and
    failed calls never consume quota.
    """

    def __init__(self, provider_id: str, ceiling: int, clock: Optional[Callable[[], date]] = None):
        self.provider_id = provider_id
        self.ceiling = ceiling
        self._clock = clock or _today
        self.daily_call_count = 0
        self.window_start = self._clock()
        self._pending = 0
        self._lock = threading.Lock()

    def _roll_window(self):
        """Reset the counter on date rollover. Caller holds the lock."""
        today = self._clock()
        if today != self.window_start:
            logger.info(
                f"[quota] {self.provider_id}: new day {today}, resetting counter "
                f"(was {self.daily_call_count}/{self.ceiling} on {self.window_start})"
            )
            self.window_start = today
            self.daily_call_count = 0

    def has_capacity(self) -> bool:
        with self._lock:
            self._roll_window()
            return self.daily_call_count + self._pending < self.ceiling

    def remaining(self) -> int:
        with self._lock:
            self._roll_window()
            return max(0, self.ceiling - self.daily_call_count - self._pending)

    def try_reserve(self) -> bool:
        """Reserve one call slot. Returns False when the ceiling is reached."""
        with self._lock:
            self._roll_window()
            if self.daily_call_count + self._pending >= self.ceiling:
                return False
            self._pending += 1
            return True

    def commit(self):
        """Turn a reservation into a counted call."""
        with self._lock:
            self._roll_window()
            if self._pending > 0:
                self._pending -= 1
            self.daily_call_count += 1
            logger.debug(f"[quota] {self.provider_id}: {self.daily_call_count}/{self.ceiling} calls today")

    def release(self):
        """Give back a reservation whose call did not succeed."""
        with self._lock:
            if self._pending > 0:
                self._pending -= 1

    def reset(self):
        """Manual reset for operators."""
        with self._lock:
            self.daily_call_count = 0
            self.window_start = self._clock()
        logger.info(f"[quota] {self.provider_id}: counter reset manually")

    def snapshot(self) -> Dict:
        with self._lock:
            self._roll_window()
            return {
                'provider_id': self.provider_id,
                'daily_call_count': self.daily_call_count,
                'ceiling': self.ceiling,
                'pending': self._pending,
                'window_start': self.window_start.isoformat(),
            }

    def __repr__(self):
        return f"<QuotaState({self.provider_id}: {self.daily_call_count}/{self.ceiling})>"


class QuotaBook:
    """Per-provider QuotaState registry."""

    def __init__(
        self,
        default_ceiling: int = 30,
        overrides: Optional[Dict[str, int]] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.default_ceiling = default_ceiling
        self.overrides = dict(overrides or {})
        self._clock = clock
        self._states: Dict[str, QuotaState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, clock: Optional[Callable[[], date]] = None) -> 'QuotaBook':
        return cls(config.daily_quota, config.daily_quota_overrides, clock=clock)

    def state_for(self, provider_id: str) -> QuotaState:
        with self._lock:
            state = self._states.get(provider_id)
            if state is None:
                ceiling = self.overrides.get(provider_id, self.default_ceiling)
                state = QuotaState(provider_id, ceiling, clock=self._clock)
                self._states[provider_id] = state
            return state

    def snapshot(self) -> Dict[str, Dict]:
        with self._lock:
            states = list(self._states.values())
        return {s.provider_id: s.snapshot() for s in states}


class ConcurrencyGate:
    """Global cap on in-flight provider calls."""

    def __init__(self, limit: int = 1):
        self.limit = max(1, limit)
        self._semaphore = asyncio.Semaphore(self.limit)
        self.in_flight = 0

    @asynccontextmanager
    async def permit(self):
        await self._semaphore.acquire()
        self.in_flight += 1
        try:
            yield
        finally:
            self.in_flight -= 1
            self._semaphore.release()
