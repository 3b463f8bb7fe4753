"""
Token bucket used by worker pools to throttle job starts.
"""

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    """
    Allows ``max_tokens`` starts per ``duration_s``, refilling continuously.

    ``wait_available`` waits for a token without rejecting; ``take`` spends it.
    """

    max_tokens: float
    duration_s: float = 1.0
    tokens: float = field(init=False)
    last_update: float = field(init=False, default_factory=time.monotonic)
    _lock: asyncio.Lock = field(init=False, repr=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if self.duration_s <= 0:
            raise ValueError("duration_s must be positive")
        self.tokens = self.max_tokens

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.max_tokens / self.duration_s

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_update = now

    async def wait_available(self) -> None:
        """Wait until a token is available without taking it."""
        async with self._lock:
            self._refill()
            while self.tokens < 1:
                await asyncio.sleep((1 - self.tokens) / self.refill_rate)
                self._refill()

    def take(self) -> None:
        """Take a token found by ``wait_available``; may go into debt."""
        self._refill()
        self.tokens -= 1
