"""Registry mapping resource kinds to provider implementations."""

from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Dict, List, Optional
from .base import ResourceProvider
from ..utils.errors import UnknownKindError
from ..utils.logging import get_logger

logger = get_logger("providers.registry")

ENTRY_POINT_GROUP = "converge.providers"


@dataclass(frozen=True)
class ProviderSpec:
    """Metadata describing a registered provider."""

    kind: str
    provider: ResourceProvider
    description: Optional[str] = None


class ProviderRegistry:
    """In-memory registry of providers, keyed by resource kind."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderSpec] = {}

    def register(
        self,
        kind: str,
        provider: ResourceProvider,
        *,
        description: Optional[str] = None,
    ) -> None:
        if not kind:
            raise ValueError("Resource kind is required")
        if not isinstance(provider, ResourceProvider):
            raise TypeError(f"Provider for '{kind}' does not implement the ResourceProvider interface")
        self._providers[kind] = ProviderSpec(kind=kind, provider=provider, description=description)
        logger.debug(f"Registered provider for kind {kind}")

    def get(self, kind: str) -> ResourceProvider:
        spec = self._providers.get(kind)
        if spec is None:
            raise UnknownKindError(f"No provider registered for resource kind '{kind}'")
        return spec.provider

    def __contains__(self, kind: str) -> bool:
        return kind in self._providers

    def kinds(self) -> List[str]:
        return sorted(self._providers)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """
        Register providers published by installed packages.

        Each entry point's name is the resource kind; its target is a
        zero-argument factory returning the provider.
        """
        loaded = 0
        for ep in entry_points(group=group):
            try:
                factory = ep.load()
                self.register(ep.name, factory(), description=f"entry point {ep.value}")
                loaded += 1
            except Exception as e:
                logger.warning(f"Skipping provider entry point {ep.name}: {e}")
        if loaded:
            logger.info(f"Loaded {loaded} providers from entry points")
        return loaded


def default_registry(load_plugins: bool = True) -> ProviderRegistry:
    """Registry with the built-in kinds and any installed plugins."""
    from .local_file import LocalFileProvider
    from .null import NullProvider

    registry = ProviderRegistry()
    registry.register("null_resource", NullProvider(), description="Resource with no real-world effect")
    registry.register("local_file", LocalFileProvider(), description="File on the local filesystem")
    if load_plugins:
        registry.load_entry_points()
    return registry
