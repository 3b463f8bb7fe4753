"""
Ordered, time-boxed shutdown of process resources.
"""

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT_S = 30.0
DEFAULT_FINAL_TIMEOUT_S = 5.0


@dataclass
class ShutdownableResource:
    name: str
    close: Callable[[], Awaitable[None]]
    # Higher closes first; equal priorities close in reverse registration order.
    priority: int = 0


@dataclass
class ShutdownStats:
    resource: str
    duration_ms: int = 0
    success: bool = False
    timed_out: bool = False
    error: str | None = None


@dataclass
class ShutdownManager:
    """
    Closes registered resources by priority.

    Each resource gets whatever remains of the overall timeout, except the
    final stage, which always gets its own window. A failing resource is
    logged and does not stop the others. A second shutdown request while one
    is running is ignored.
    """

    timeout_s: float = DEFAULT_SHUTDOWN_TIMEOUT_S
    final_timeout_s: float = DEFAULT_FINAL_TIMEOUT_S
    final_priority: int = 0
    resources: list[ShutdownableResource] = field(default_factory=list)
    in_progress: bool = False
    done: asyncio.Event = field(default_factory=asyncio.Event)

    def register(
        self, name: str, close: Callable[[], Awaitable[None]], priority: int = 0
    ) -> None:
        self.resources.append(ShutdownableResource(name, close, priority))
        logger.debug("Resource registered for shutdown", extra={"resource": name})

    def unregister(self, name: str) -> None:
        self.resources = [r for r in self.resources if r.name != name]

    def ordered(self) -> list[ShutdownableResource]:
        indexed = list(enumerate(self.resources))
        indexed.sort(key=lambda pair: (-pair[1].priority, -pair[0]))
        return [resource for _, resource in indexed]

    async def shutdown(self, reason: str = "shutdown", timeout_s: float | None = None) -> bool:
        """
        Close every resource; False when one failed or ran out of time.

        Resources above ``final_priority`` share the overall timeout. Those at
        or below it (shared connections) always run afterwards, each bounded
        by ``final_timeout_s``, even when an earlier stage timed out.
        """
        if self.in_progress:
            logger.warning(
                "Shutdown already in progress, ignoring duplicate signal",
                extra={"reason": reason},
            )
            return False

        self.in_progress = True
        timeout = self.timeout_s if timeout_s is None else timeout_s
        started = time.monotonic()
        deadline = started + timeout
        stats: list[ShutdownStats] = []
        logger.info(
            "Graceful shutdown initiated",
            extra={
                "reason": reason,
                "timeout_s": timeout,
                "resource_count": len(self.resources),
            },
        )

        try:
            for resource in self.ordered():
                if resource.priority > self.final_priority:
                    budget = deadline - time.monotonic()
                else:
                    budget = self.final_timeout_s
                stats.append(await self._close_one(resource, budget))
        finally:
            self.done.set()

        timed_out = [s.resource for s in stats if s.timed_out]
        if timed_out:
            logger.error(
                "Graceful shutdown timed out",
                extra={
                    "duration_ms": _elapsed_ms(started),
                    "resources_closed": sum(s.success for s in stats),
                    "resources_timed_out": timed_out,
                },
            )
        else:
            logger.info(
                "Graceful shutdown completed",
                extra={
                    "duration_ms": _elapsed_ms(started),
                    "resources_closed": sum(s.success for s in stats),
                    "resources_failed": sum(not s.success for s in stats),
                },
            )
        return all(s.success for s in stats)

    async def _close_one(
        self, resource: ShutdownableResource, budget_s: float
    ) -> ShutdownStats:
        stat = ShutdownStats(resource=resource.name)
        started = time.monotonic()
        if budget_s <= 0:
            stat.timed_out = True
            stat.error = "shutdown timeout reached before close"
            return stat
        try:
            await asyncio.wait_for(resource.close(), timeout=budget_s)
            stat.success = True
        except asyncio.TimeoutError:
            stat.timed_out = True
            stat.error = f"close did not finish within {budget_s:.1f}s"
            logger.error(
                "Resource close timed out",
                extra={"resource": resource.name, "budget_s": round(budget_s, 3)},
            )
        except Exception as e:
            stat.error = str(e)
            logger.error(
                "Failed to close resource",
                extra={"resource": resource.name, "error": stat.error},
            )
        stat.duration_ms = _elapsed_ms(started)
        return stat

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Run ``shutdown`` on SIGINT or SIGTERM."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig, lambda s=sig: asyncio.ensure_future(self.shutdown(s.name))
            )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
