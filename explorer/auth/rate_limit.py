from __future__ import annotations

import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from explorer.authz.policy import load_admission_policy

_PRUNE_INTERVAL_SECONDS = 300.0


@dataclass
class AdmissionRecord:
    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateWindow:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    retry_after_seconds: int = 0
    limit: int = 0
    remaining: int = 0
    reset_at: float = 0.0


class CounterStore:
    """
    Process-wide admission counters.

    All reads and writes happen inside `locked()`, so a check and its increment are a
    single atomic step even when request handlers run on several threads.
    """

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, int], AdmissionRecord] = {}
        self._lock = threading.Lock()

    @contextmanager
    def locked(self) -> Iterator[Dict[Tuple[str, int], AdmissionRecord]]:
        with self._lock:
            yield self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FixedWindowRateLimiter:
    """
    Fixed-window rate limiter keyed by caller.

    A record resets fully when its window expires; it does not decay. With several
    windows configured, a request is admitted only if every window admits it, and then
    every window is charged.
    """

    def __init__(
        self,
        windows: Sequence[RateWindow],
        *,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            windows: One or more (max_requests, window_seconds) ceilings
            store: Counter store (default: a private in-memory store)
            clock: Seconds-since-epoch clock, injectable for tests
        """
        if not windows:
            raise ValueError("at least one rate window is required")
        self._windows: List[RateWindow] = list(windows)
        self._store = store if store is not None else CounterStore()
        self._clock = clock
        self._last_prune = clock()

    @property
    def windows(self) -> List[RateWindow]:
        return list(self._windows)

    def check(self, key: str) -> AdmissionDecision:
        """
        Check whether `key` may proceed and charge it if so.

        Args:
            key: Caller identifier (IP address, session id, ...)

        Returns:
            AdmissionDecision. On denial `retry_after_seconds` is a positive number of
            seconds until the blocking window resets; nothing is incremented.
        """
        now = self._clock()
        with self._store.locked() as records:
            if now - self._last_prune >= _PRUNE_INTERVAL_SECONDS:
                self._prune_locked(records, now)

            pending: List[Tuple[Tuple[str, int], AdmissionRecord]] = []
            retry_after = 0
            for idx, w in enumerate(self._windows):
                rk = (key, idx)
                rec = records.get(rk)
                if rec is None or now >= rec.window_reset_at:
                    pending.append((rk, AdmissionRecord(count=1, window_reset_at=now + w.window_seconds)))
                elif rec.count < w.max_requests:
                    pending.append((rk, AdmissionRecord(count=rec.count + 1, window_reset_at=rec.window_reset_at)))
                else:
                    retry_after = max(retry_after, max(1, math.ceil(rec.window_reset_at - now)))

            primary = self._windows[0]
            if retry_after > 0:
                rec0 = records.get((key, 0))
                reset_at = rec0.window_reset_at if rec0 is not None else now + primary.window_seconds
                remaining = max(0, primary.max_requests - rec0.count) if rec0 is not None else primary.max_requests
                return AdmissionDecision(
                    allowed=False,
                    retry_after_seconds=retry_after,
                    limit=primary.max_requests,
                    remaining=remaining,
                    reset_at=reset_at,
                )

            for rk, rec in pending:
                records[rk] = rec
            rec0 = records[(key, 0)]
            return AdmissionDecision(
                allowed=True,
                limit=primary.max_requests,
                remaining=max(0, primary.max_requests - rec0.count),
                reset_at=rec0.window_reset_at,
            )

    def reset(self, key: str) -> None:
        with self._store.locked() as records:
            for idx in range(len(self._windows)):
                records.pop((key, idx), None)

    def prune(self) -> int:
        """Drop expired records. Returns the number removed."""
        now = self._clock()
        with self._store.locked() as records:
            return self._prune_locked(records, now)

    def _prune_locked(self, records: Dict[Tuple[str, int], AdmissionRecord], now: float) -> int:
        expired = [k for k, rec in records.items() if now >= rec.window_reset_at]
        for k in expired:
            del records[k]
        self._last_prune = now
        return len(expired)


class DailyBudget:
    """
    Global daily spend gate.

    Token usage from completed exchanges is accumulated and converted to dollars; the
    gate closes once the day's spend reaches the ceiling and reopens on the next
    calendar day.
    """

    def __init__(
        self,
        *,
        daily_budget_usd: float,
        cost_per_million_tokens_usd: float,
        today: Callable[[], date] = date.today,
    ):
        self._budget = float(daily_budget_usd)
        self._cost_per_million = float(cost_per_million_tokens_usd)
        self._today = today
        self._lock = threading.Lock()
        self._day = today()
        self._tokens = 0
        self._requests = 0

    def _rollover_locked(self) -> None:
        d = self._today()
        if d != self._day:
            self._day = d
            self._tokens = 0
            self._requests = 0

    def record_usage(self, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self._rollover_locked()
            self._tokens += max(0, int(input_tokens or 0)) + max(0, int(output_tokens or 0))
            self._requests += 1

    def spent_usd(self) -> float:
        with self._lock:
            self._rollover_locked()
            return self._tokens / 1_000_000 * self._cost_per_million

    def check_budget(self) -> bool:
        """Return True while today's spend is below the ceiling."""
        return self.spent_usd() < self._budget

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            self._rollover_locked()
            return {
                "date": self._day.isoformat(),
                "requests": self._requests,
                "tokens": self._tokens,
                "spent_usd": round(self._tokens / 1_000_000 * self._cost_per_million, 4),
                "budget_usd": self._budget,
            }


def rate_limit_headers(decision: AdmissionDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }


# Process-wide gates
_chat_limiter: FixedWindowRateLimiter | None = None
_mcp_limiter: FixedWindowRateLimiter | None = None
_budget: DailyBudget | None = None
_init_lock = threading.Lock()


def get_chat_rate_limiter() -> FixedWindowRateLimiter:
    """Get the chat admission gate (per minute + per hour)."""
    global _chat_limiter
    with _init_lock:
        if _chat_limiter is None:
            p = load_admission_policy()
            _chat_limiter = FixedWindowRateLimiter(
                [RateWindow(p.chat_per_minute, 60), RateWindow(p.chat_per_hour, 3600)]
            )
        return _chat_limiter


def get_mcp_rate_limiter() -> FixedWindowRateLimiter:
    """Get the protocol adapter admission gate."""
    global _mcp_limiter
    with _init_lock:
        if _mcp_limiter is None:
            p = load_admission_policy()
            _mcp_limiter = FixedWindowRateLimiter([RateWindow(p.mcp_per_minute, 60)])
        return _mcp_limiter


def get_daily_budget() -> DailyBudget:
    global _budget
    with _init_lock:
        if _budget is None:
            p = load_admission_policy()
            _budget = DailyBudget(
                daily_budget_usd=p.daily_budget_usd,
                cost_per_million_tokens_usd=p.cost_per_million_tokens_usd,
            )
        return _budget


def reset_admission_state() -> None:
    """Forget all process-wide gates (next access rebuilds them from env)."""
    global _chat_limiter, _mcp_limiter, _budget
    with _init_lock:
        _chat_limiter = None
        _mcp_limiter = None
        _budget = None
