from .base import ProviderResult, ResourceProvider
from .registry import ProviderRegistry, ProviderSpec, default_registry

__all__ = [
    "ProviderResult",
    "ResourceProvider",
    "ProviderRegistry",
    "ProviderSpec",
    "default_registry",
]
