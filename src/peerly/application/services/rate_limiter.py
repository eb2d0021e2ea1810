# src/peerly/application/services/rate_limiter.py
"""
Rate limiter / cooldown tracker for outbound metadata lookups.

Two rules with different failure modes:
- Global: lookup batches start at least ``min_global_interval`` apart. Callers that
  arrive early are suspended until their slot, never rejected.
- Per-DOI: a DOI claimed within ``per_doi_cooldown`` is rejected outright; the caller
  falls back to whatever the store already holds.

A 429 from any source pushes the next global slot forward by ``rate_limit_penalty``.
Clock and sleep are injectable so the policy can be driven by a fake clock in tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Process-wide cooldown ledger. Construct once and share by reference."""

    DEFAULT_MIN_GLOBAL_INTERVAL = 2.5
    DEFAULT_PER_DOI_COOLDOWN = 45.0
    DEFAULT_RATE_LIMIT_PENALTY = 10.0
    DEFAULT_MAX_TRACKED = 10_000

    def __init__(
        self,
        *,
        min_global_interval: float = DEFAULT_MIN_GLOBAL_INTERVAL,
        per_doi_cooldown: float = DEFAULT_PER_DOI_COOLDOWN,
        rate_limit_penalty: float = DEFAULT_RATE_LIMIT_PENALTY,
        max_tracked: int = DEFAULT_MAX_TRACKED,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.min_global_interval = max(0.0, float(min_global_interval))
        self.per_doi_cooldown = max(0.0, float(per_doi_cooldown))
        self.rate_limit_penalty = max(0.0, float(rate_limit_penalty))
        self.max_tracked = max(1, int(max_tracked))
        self._clock: Clock = clock or time.monotonic
        self._sleep: Sleep = sleep or asyncio.sleep

        # doi -> claim timestamp, oldest first
        self._ledger: "OrderedDict[str, float]" = OrderedDict()
        self._next_allowed: Optional[float] = None
        self._last_batch_at: Optional[float] = None

    def now(self) -> float:
        return self._clock()

    # ── per-DOI rule ────────────────────────────────────────────

    def try_claim(self, key: str) -> bool:
        """
        Atomically claim ``key`` for an outbound lookup.

        Returns False (and records nothing) if the key was claimed within the
        cooldown window. There is no await between the check and the write.
        """
        now = self._clock()
        self._sweep(now)
        last = self._ledger.get(key)
        if last is not None and now - last < self.per_doi_cooldown:
            logger.debug("cooldown hit for %s (%.1fs left)", key, self.per_doi_cooldown - (now - last))
            return False
        self._ledger[key] = now
        self._ledger.move_to_end(key)
        while len(self._ledger) > self.max_tracked:
            self._ledger.popitem(last=False)
        return True

    def is_known(self, key: str) -> bool:
        """Whether ``key`` has an entry in the ledger (looked up before, not yet evicted)."""
        return key in self._ledger

    def remaining_cooldown(self, key: str) -> float:
        last = self._ledger.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.per_doi_cooldown - (self._clock() - last))

    def _sweep(self, now: float) -> None:
        # entries are in claim order, so expired ones sit at the front
        while self._ledger:
            key, ts = next(iter(self._ledger.items()))
            if now - ts < self.per_doi_cooldown:
                break
            self._ledger.popitem(last=False)

    # ── global rule ─────────────────────────────────────────────

    async def acquire_global(self) -> float:
        """
        Wait for the next global slot and record a batch start.

        The slot is reserved before sleeping, so concurrent callers queue up one
        interval apart instead of waking together. Returns the seconds waited.
        """
        now = self._clock()
        start = now if self._next_allowed is None else max(now, self._next_allowed)
        self._next_allowed = start + self.min_global_interval
        self._last_batch_at = start
        wait = start - now
        if wait > 0:
            logger.debug("global rate limit: waiting %.2fs", wait)
            await self._sleep(wait)
        return wait

    def penalize(self) -> None:
        """Push the next global slot forward after an HTTP 429."""
        base = self._clock()
        if self._next_allowed is not None:
            base = max(base, self._next_allowed)
        self._next_allowed = base + self.rate_limit_penalty
        logger.warning("rate limited upstream; next lookup batch delayed %.1fs", self._next_allowed - self._clock())

    @property
    def next_allowed_at(self) -> Optional[float]:
        return self._next_allowed

    @property
    def last_batch_at(self) -> Optional[float]:
        return self._last_batch_at

    def tracked_count(self) -> int:
        return len(self._ledger)

    def reset(self) -> None:
        self._ledger.clear()
        self._next_allowed = None
        self._last_batch_at = None
