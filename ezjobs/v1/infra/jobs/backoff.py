"""
Backoff functions mapping an attempt count to a retry delay in seconds.
"""

from dataclasses import dataclass
from typing import Any, Protocol

# Webhook delivery event ladder: 1m, 5m, 15m, 1h, 6h
WEBHOOK_RETRY_LADDER_S = (60, 300, 900, 3600, 21600)


class Backoff(Protocol):
    def delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt."""
        ...

    def to_config(self) -> dict[str, Any]:
        """JSON config stored on the job record."""
        ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """``delay(n) = base * 2^(n-1)``."""

    base_s: float

    def delay(self, attempts: int) -> float:
        return self.base_s * 2 ** (attempts - 1)

    def to_config(self) -> dict[str, Any]:
        return {"type": "exponential", "delay_ms": round(self.base_s * 1000)}


@dataclass(frozen=True)
class FixedBackoff:
    delay_s: float

    def delay(self, attempts: int) -> float:
        return self.delay_s

    def to_config(self) -> dict[str, Any]:
        return {"type": "fixed", "delay_ms": round(self.delay_s * 1000)}


@dataclass(frozen=True)
class FixedLadderBackoff:
    """``delay(n) = ladder[min(n, len(ladder) - 1)]``; capped, never unbounded."""

    ladder_s: tuple[float, ...] = WEBHOOK_RETRY_LADDER_S

    def __post_init__(self) -> None:
        if not self.ladder_s:
            raise ValueError("Backoff ladder must not be empty")

    def delay(self, attempts: int) -> float:
        index = min(max(attempts, 0), len(self.ladder_s) - 1)
        return self.ladder_s[index]

    def to_config(self) -> dict[str, Any]:
        return {"type": "ladder", "delays_s": list(self.ladder_s)}


def exponential_ms(delay_ms: int) -> ExponentialBackoff:
    return ExponentialBackoff(base_s=delay_ms / 1000)


def backoff_from_config(config: dict[str, Any] | None, default: Backoff) -> Backoff:
    """Rebuild a backoff policy from a stored job config."""
    if not config:
        return default

    kind = config.get("type")
    if kind == "exponential":
        return exponential_ms(int(config["delay_ms"]))
    if kind == "fixed":
        return FixedBackoff(delay_s=int(config["delay_ms"]) / 1000)
    if kind == "ladder":
        return FixedLadderBackoff(ladder_s=tuple(config["delays_s"]))
    raise ValueError(f"Unknown backoff type: {kind}")
