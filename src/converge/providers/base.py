"""Resource provider capability interface."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of a successful create."""

    provider_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ResourceProvider(Protocol):
    """
    Capability every resource kind must supply.

    Providers talk to the real world; the engine never inspects how. Raising
    `ProviderTransientError` marks a failure as retryable (rate limiting,
    throttling, timeouts); any other exception fails the step.
    """

    def create(self, attributes: Dict[str, Any]) -> ProviderResult:
        ...

    def read(self, provider_id: str) -> Optional[Dict[str, Any]]:
        """Current attributes of the object, or None if it no longer exists."""
        ...

    def update(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def destroy(self, provider_id: str) -> None:
        ...

    def requires_replacement(self, old_attributes: Dict[str, Any], new_attributes: Dict[str, Any]) -> bool:
        """True if moving from old to new cannot be done in place."""
        ...


def changed_keys(old_attributes: Dict[str, Any], new_attributes: Dict[str, Any]) -> set:
    """Attribute names whose values differ between two attribute maps."""
    keys = set(old_attributes) | set(new_attributes)
    return {key for key in keys if old_attributes.get(key) != new_attributes.get(key)}
