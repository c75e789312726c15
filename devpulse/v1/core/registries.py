from enum import Enum
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
                "registry is frozen in production mode"
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

    def clear(self) -> None:
        """Remove every registration."""
        if self._frozen:
            raise RuntimeError(f"Cannot clear frozen {self.name.lower()} registry")
        self._implementations.clear()

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


class KeyedRegistry(Registry[T]):
    """Registry restricted to the members of a closed enum of tags.

    Every tag must end up with exactly one implementation; ``ensure_complete``
    is called at startup so a newly added tag without a handler fails fast
    instead of surfacing as a runtime dispatch miss.
    """

    def __init__(self, name: str, keys: type[Enum]):
        super().__init__(name)
        self.keys = keys

    def register(self, name: str | Enum, implementation: T) -> None:
        key = self._coerce(name)
        super().register(key, implementation)

    def get(self, name: str | Enum) -> T:
        return super().get(name.value if isinstance(name, Enum) else name)

    def missing(self) -> list[str]:
        """Tags of the enum that have no implementation yet."""
        return [
            member.value
            for member in self.keys
            if member.value not in self._implementations
        ]

    def ensure_complete(self) -> None:
        missing = self.missing()
        if missing:
            raise RuntimeError(
                f"{self.name} registry is missing implementations for: "
                f"{', '.join(missing)}"
            )

    def _coerce(self, name: str | Enum) -> str:
        value = name.value if isinstance(name, Enum) else name
        allowed = {member.value for member in self.keys}
        if value not in allowed:
            raise ValueError(
                f"Unknown {self.name.lower()} tag '{value}'; "
                f"expected one of: {', '.join(sorted(allowed))}"
            )
        return value


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(self, job: Any) -> Any:
        """
        Handle a background job.

        Args:
            job: The claimed job row; handlers read ``job.payload`` and
                validate their own expected shape.

        Returns:
            A ``JobResult`` (``success`` flag, optional ``data`` and
            ``error``). Raising is allowed; the processor converts the
            exception into a failed result.
        """
        ...


class JobRegistry(KeyedRegistry[JobHandler]):
    """Registry mapping every job type to exactly one handler."""

    def __init__(self):
        from devpulse.v1.jobs.models import JobType

        super().__init__("Job", JobType)


# Global registry instance (singleton)
job_registry = JobRegistry()
