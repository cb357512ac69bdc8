"""
Per-window call budgets for the remote lookup API

Each query class is served by one or more authentication channels. User
channels are counted per identity; the application channel is shared by
everyone. The remaining allowance for a query is the minimum across the
channels eligible for it.
"""

from enum import Enum
from typing import Dict, Optional
import threading
import time
import logging

from sixdegrees.config import DEFAULT_RATE_LIMITS, RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


class QueryType(str, Enum):
    HASHTAG_CONNECTIONS_BY_HASHTAG = 'hashtag_connections_by_hashtag'
    USER_CONNECTIONS_BY_ID = 'user_connections_by_id'


class AuthenticationType(str, Enum):
    USER = 'user'
    APPLICATION = 'application'


ELIGIBLE_CHANNELS = {
    QueryType.HASHTAG_CONNECTIONS_BY_HASHTAG: (AuthenticationType.USER, AuthenticationType.APPLICATION),
    QueryType.USER_CONNECTIONS_BY_ID: (AuthenticationType.USER,),
}


class _Window:
    __slots__ = ('limit', 'remaining', 'reset_at')

    def __init__(self, limit: int, reset_at: float):
        self.limit = limit
        self.remaining = limit
        self.reset_at = reset_at

    def reset_if_needed(self, now: float, window_seconds: int):
        if now >= self.reset_at:
            self.remaining = self.limit
            self.reset_at = now + window_seconds


class RateBudgetGate:
    """
    Thread-safe remaining-call counters for the current limiting window

    Args:
        limits: Allowance per window for each query class (defaults from config)
        window_seconds: Length of a limiting window
        clock: Time source, replaceable in tests
    """

    def __init__(self, limits: Optional[Dict[str, int]] = None,
                 window_seconds: int = RATE_LIMIT_WINDOW_SECONDS, clock=time.time):
        self.limits = {QueryType(k): v for k, v in (limits or DEFAULT_RATE_LIMITS).items()}
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows = {}
        self._lock = threading.RLock()

    def _window(self, query_class: QueryType, channel: AuthenticationType, identity) -> _Window:
        owner = identity if channel is AuthenticationType.USER else None
        key = (query_class, channel, owner)
        now = self._clock()
        window = self._windows.get(key)
        if window is None:
            window = _Window(self.limits.get(query_class, 0), now + self.window_seconds)
            self._windows[key] = window
        window.reset_if_needed(now, self.window_seconds)
        return window

    def remaining_by_channel(self, query_class, identity=None) -> Dict[AuthenticationType, int]:
        query_class = QueryType(query_class)
        with self._lock:
            return {
                channel: self._window(query_class, channel, identity).remaining
                for channel in ELIGIBLE_CHANNELS[query_class]
            }

    def remaining_calls(self, query_class, identity=None) -> int:
        """Minimum remaining allowance across the eligible channels"""
        return min(self.remaining_by_channel(query_class, identity).values())

    def consume(self, query_class, identity=None, calls: int = 1):
        """Charge calls against every eligible channel"""
        query_class = QueryType(query_class)
        with self._lock:
            for channel in ELIGIBLE_CHANNELS[query_class]:
                window = self._window(query_class, channel, identity)
                window.remaining = max(0, window.remaining - calls)
        logger.debug(f"Consumed {calls} call(s) for {query_class.value} (identity={identity})")

    def call_budget(self, query_class, identity, requested: int) -> int:
        """Largest number of calls a new search may make"""
        return min(requested, self.remaining_calls(query_class, identity))


# Global gate instance
_global_gate: Optional[RateBudgetGate] = None


def get_gate() -> RateBudgetGate:
    global _global_gate

    if _global_gate is None:
        _global_gate = RateBudgetGate()

    return _global_gate
