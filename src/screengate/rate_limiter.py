"""Per-account request-rate ceiling over a sliding window.

Each account keeps a log of the monotonic timestamps of its admitted
requests inside the trailing window. The log never holds more than `limit`
entries and is pruned from the left on every call, so acquire is O(1)
amortized and memory per account is bounded.

Usage:
    limiter = RateLimiter()
    slot = limiter.acquire(user_id, limit=package.rate_limit, window=60.0)
    if slot is None:
        raise RateLimited(...)
    ...
    limiter.release(slot)  # the request was rejected further down
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, NamedTuple, Optional

from loguru import logger

from .utils import KeyedLock


class RateSlot(NamedTuple):
    """One recorded request. stamp is None when the account is unlimited."""

    account_id: Hashable
    stamp: Optional[float]


class _Window:
    __slots__ = ("stamps", "window")

    def __init__(self, window: float):
        self.stamps: Deque[float] = deque()
        self.window = window

    def prune(self, now: float) -> None:
        cutoff = now - self.window
        while self.stamps and self.stamps[0] <= cutoff:
            self.stamps.popleft()


class RateLimiter:
    """Sliding-window log rate limiter with one lock per account."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._locks = KeyedLock()
        self._windows: Dict[Hashable, _Window] = {}
        self._windows_guard = threading.Lock()

    def _window_for(self, account_id: Hashable, window: float) -> _Window:
        with self._windows_guard:
            state = self._windows.get(account_id)
            if state is None:
                state = self._windows[account_id] = _Window(window)
            return state

    def try_acquire(self, account_id: Hashable, limit: int, window: float) -> bool:
        """Record one request for the account if it is under its ceiling."""
        return self.acquire(account_id, limit, window) is not None

    def acquire(self, account_id: Hashable, limit: int, window: float) -> Optional[RateSlot]:
        """
        Record one request for the account if it is under its ceiling.

        Args:
            account_id: Account being rate limited
            limit: Maximum requests per window; 0 means unlimited
            window: Window length in seconds

        Returns:
            RateSlot for the recorded request, or None (with no side effect)
            if the account already made `limit` requests in the trailing window
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        if limit == 0:
            return RateSlot(account_id, None)
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")

        with self._locks.hold(account_id):
            state = self._window_for(account_id, window)
            state.window = window
            now = self._clock()
            state.prune(now)

            if len(state.stamps) >= limit:
                logger.debug(f"Account {account_id} at rate ceiling {limit}/{window:g}s")
                return None

            state.stamps.append(now)
            return RateSlot(account_id, now)

    def release(self, slot: RateSlot) -> None:
        """Withdraw a recorded request (admission rejected it later)."""
        if slot.stamp is None:
            return
        with self._locks.hold(slot.account_id):
            with self._windows_guard:
                state = self._windows.get(slot.account_id)
            # already pruned if the window moved past it
            if state and slot.stamp in state.stamps:
                state.stamps.remove(slot.stamp)

    def usage(self, account_id: Hashable) -> int:
        """Requests currently counted against the account."""
        with self._locks.hold(account_id):
            with self._windows_guard:
                state = self._windows.get(account_id)
            if state is None:
                return 0
            state.prune(self._clock())
            return len(state.stamps)

    def purge_idle(self) -> int:
        """Drop accounts whose window has fully drained. Returns how many were dropped."""
        with self._windows_guard:
            accounts = list(self._windows)

        dropped = 0
        for account_id in accounts:
            with self._locks.hold(account_id):
                with self._windows_guard:
                    state = self._windows.get(account_id)
                    if state is None:
                        continue
                    state.prune(self._clock())
                    if not state.stamps:
                        del self._windows[account_id]
                        dropped += 1

        if dropped:
            logger.debug(f"Purged {dropped} idle rate-limit windows")
        return dropped

    def __len__(self) -> int:
        with self._windows_guard:
            return len(self._windows)
