"""
Adapter Registry Module
=======================

Central registry for catalog provider adapters.
Provides factory functions for creating adapters by name.
"""

from __future__ import annotations

from typing import Any, Type

from shelf_agent.catalog.adapters.base import (
    BatchLookupResult,
    CatalogAdapter,
    LookupResult,
    LookupStatus,
    LookupWarning,
    ProviderError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
)
from shelf_agent.catalog.adapters.igdb import IgdbAdapter
from shelf_agent.catalog.adapters.openlibrary import OpenLibraryAdapter
from shelf_agent.catalog.adapters.tmdb import TmdbAdapter
from shelf_agent.catalog.registry import ProviderConfig


# Registry mapping adapter names to their classes
ADAPTER_REGISTRY: dict[str, Type[CatalogAdapter]] = {
    "igdb": IgdbAdapter,
    "openlibrary": OpenLibraryAdapter,
    "tmdb": TmdbAdapter,
}


def get_adapter(
    adapter_type: str,
    config: ProviderConfig | None = None,
    **kwargs: Any,
) -> CatalogAdapter | None:
    """
    Get an adapter instance by type name.

    Args:
        adapter_type: Name of the adapter (e.g., "openlibrary")
        config: Optional provider configuration
        **kwargs: Passed through to the adapter constructor

    Returns:
        Adapter instance, or None if type not found
    """
    adapter_class = ADAPTER_REGISTRY.get(adapter_type)
    if adapter_class is None:
        return None
    return adapter_class(config, **kwargs)


def register_adapter(name: str, adapter_class: Type[CatalogAdapter]) -> None:
    """
    Register a new adapter type.

    Args:
        name: Name to register the adapter under
        adapter_class: Adapter class (must inherit from CatalogAdapter)
    """
    if not issubclass(adapter_class, CatalogAdapter):
        raise TypeError(f"{adapter_class} must inherit from CatalogAdapter")
    ADAPTER_REGISTRY[name] = adapter_class


def list_adapters() -> list[str]:
    """
    List all registered adapter names.

    Returns:
        List of adapter type names
    """
    return list(ADAPTER_REGISTRY.keys())


def get_adapter_info(adapter_type: str) -> dict[str, Any] | None:
    """
    Get information about an adapter type.

    Args:
        adapter_type: Name of the adapter

    Returns:
        Dict with adapter info, or None if not found
    """
    adapter_class = ADAPTER_REGISTRY.get(adapter_type)
    if adapter_class is None:
        return None

    return {
        "name": adapter_class.ADAPTER_NAME,
        "version": adapter_class.ADAPTER_VERSION,
        "class": adapter_class.__name__,
        "shelf_types": list(adapter_class.DEFAULT_SHELF_TYPES),
        "platform_filter": adapter_class.SUPPORTS_PLATFORM_FILTER,
    }


__all__ = [
    # Registry functions
    "get_adapter",
    "register_adapter",
    "list_adapters",
    "get_adapter_info",
    "ADAPTER_REGISTRY",
    # Base classes
    "CatalogAdapter",
    "BatchLookupResult",
    "LookupResult",
    "LookupStatus",
    "LookupWarning",
    "ProviderError",
    "ProviderRateLimitedError",
    "ProviderTimeoutError",
    # Concrete adapters
    "IgdbAdapter",
    "OpenLibraryAdapter",
    "TmdbAdapter",
]
