"""Custom exception classes for converge."""

from typing import List, Optional


class ConvergeError(Exception):
    """Base exception for all converge errors."""
    pass


class ConfigError(ConvergeError):
    """Raised when configuration is invalid or missing."""
    pass


class DeclarationLoadError(ConvergeError):
    """Raised when a declaration document cannot be loaded or is invalid."""
    pass


class UnknownReferenceError(ConvergeError):
    """Raised when a reference names an address absent from the declaration set."""

    def __init__(self, source: str, reference: str):
        self.source = source
        self.reference = reference
        super().__init__(
            f"Resource {source} references {reference}, which is not declared"
        )


class CyclicDependencyError(ConvergeError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}")


class UnresolvedReferenceError(ConvergeError):
    """Raised when a reference value cannot be resolved."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Cannot resolve {reference}: {reason}")


class UnknownKindError(ConvergeError):
    """Raised when no provider is registered for a resource kind."""
    pass


class StateStoreError(ConvergeError):
    """Raised when the state store cannot be read or written."""
    pass


class StateLockError(StateStoreError):
    """Raised when the state lock is held by another run."""
    pass


class StalePlanError(ConvergeError):
    """Raised when a saved plan no longer matches the current state."""
    pass


class ApplyError(ConvergeError):
    """Raised when applying a single step fails."""

    def __init__(self, address: str, message: str, attempts: Optional[int] = None):
        self.address = address
        self.attempts = attempts
        super().__init__(f"{address}: {message}")


class ProviderTransientError(ConvergeError):
    """Raised by providers for retryable failures such as rate limiting."""
    pass
