from collections.abc import Iterable
from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Handler Registry - one per queue, keyed by job type
class JobHandler(Protocol):
    """Protocol for background job handlers."""

    async def handle(self, job: Any) -> dict[str, Any] | None:
        """
        Process one job attempt.

        Receives the active job (typed payload, attempt number, progress hook).
        Returns a JSON-serialisable result, or raises to fail the attempt.
        """
        ...


class MissingHandlerError(Exception):
    """Raised when a handler registry does not cover a queue's job types."""


class JobHandlerRegistry(Registry[JobHandler]):
    """Registry of job handlers for a single queue."""

    def __init__(self, queue_name: str):
        super().__init__(f"JobHandler[{queue_name}]")
        self.queue_name = queue_name

    def ensure_covers(self, job_types: Iterable[str]) -> None:
        """Fail unless exactly the given job types have handlers."""
        expected = set(job_types)
        registered = set(self._implementations)
        missing = sorted(expected - registered)
        unknown = sorted(registered - expected)
        if missing or unknown:
            raise MissingHandlerError(
                f"Handlers for queue '{self.queue_name}' do not match its job types "
                f"(missing={missing}, unknown={unknown})"
            )
