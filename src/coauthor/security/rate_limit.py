from __future__ import annotations

"""Per-caller request budgets.

Every AI endpoint spends one unit of the caller's AI budget (30 calls a
minute by default) before any model call is made; issuing a development token
spends from a separate, slower budget keyed by client host and email. A budget
is a fixed window: the first request opens it, and once ``limit`` requests have
been spent the caller is refused until the window closes.

Counters live in process memory, so each API worker keeps its own budgets.
Limits and window lengths can be overridden through the environment.
"""

import math
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple


@dataclass(frozen=True)
class Budget:
    name: str
    limit_env: str
    window_env: str
    default_limit: int
    default_window_seconds: int

    @property
    def limit(self) -> int:
        return _positive_env_int(self.limit_env, self.default_limit)

    @property
    def window_seconds(self) -> int:
        return _positive_env_int(self.window_env, self.default_window_seconds)


AI_REQUESTS = Budget(
    name="ai_request",
    limit_env="COAUTHOR_AI_RATE_LIMIT",
    window_env="COAUTHOR_AI_RATE_WINDOW_SEC",
    default_limit=30,
    default_window_seconds=60,
)

TOKEN_REQUESTS = Budget(
    name="token_request",
    limit_env="COAUTHOR_TOKEN_REQUEST_LIMIT",
    window_env="COAUTHOR_TOKEN_REQUEST_WINDOW_SEC",
    default_limit=10,
    default_window_seconds=900,
)


@dataclass
class _Window:
    spent: int
    closes_at: float


_WINDOWS: Dict[Tuple[str, str], _Window] = {}
_LOCK = Lock()


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


def spend(budget: Budget, caller: str) -> None:
    """Take one request from ``caller``'s share of ``budget``.

    Raises RateLimitExceeded, with whole seconds until the window closes,
    when the share is already used up. Refused requests spend nothing.
    """
    if _rate_limiting_disabled():
        return
    now = time.monotonic()
    key = (budget.name, caller)
    with _LOCK:
        window = _WINDOWS.get(key)
        if window is None or window.closes_at <= now:
            _WINDOWS[key] = _Window(spent=1, closes_at=now + budget.window_seconds)
            return
        if window.spent >= budget.limit:
            raise RateLimitExceeded(max(math.ceil(window.closes_at - now), 1))
        window.spent += 1


def rate_limit_ai_request(user_id: str) -> None:
    spend(AI_REQUESTS, user_id)


def rate_limit_token_request(host: str, email: str) -> None:
    spend(TOKEN_REQUESTS, f"{host}:{email.lower()}")


def _positive_env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, ""))
    except ValueError:
        return default
    return value if value > 0 else default


def _rate_limiting_disabled() -> bool:
    flag = os.getenv("COAUTHOR_RATE_LIMIT_DISABLED", "")
    if flag.lower() in {"1", "true", "yes", "on"}:
        return True
    # Test runs share one process; budgets are opted back in per test
    return bool(os.getenv("PYTEST_CURRENT_TEST"))


def reset_rate_limits() -> None:
    with _LOCK:
        _WINDOWS.clear()
