"""
Shelf Agent Catalog Resolution
==============================

Provider adapters for external catalogs (books, movies, games), the
sliding-window rate limiter they share, the YAML settings registry and
the fixed-priority resolution chain that dispatches lookups by shelf kind.
"""

from shelf_agent.catalog.chain import CatalogResolutionChain, build_default_chain
from shelf_agent.catalog.rate_limit import SlidingWindowRateLimiter
from shelf_agent.catalog.registry import (
    ProviderConfig,
    RateLimitConfig,
    SettingsRegistry,
    get_default_registry,
)

__all__ = [
    "CatalogResolutionChain",
    "build_default_chain",
    "SlidingWindowRateLimiter",
    "ProviderConfig",
    "RateLimitConfig",
    "SettingsRegistry",
    "get_default_registry",
]
