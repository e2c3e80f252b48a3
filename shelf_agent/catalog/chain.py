"""
Catalog Resolution Chain
========================

Orders provider adapters by priority. A lookup goes to the first
configured adapter that owns the shelf kind; items it leaves unresolved
(no title match, timeout, provider error) fall through to the next
adapter owning the same kind. Candidates from different providers are
never merged: the first provider to resolve an item wins.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from shelf_agent.catalog.adapters import CatalogAdapter, get_adapter
from shelf_agent.catalog.adapters.base import (
    BatchLookupResult,
    LookupResult,
    LookupStatus,
    LookupWarning,
)
from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import CatalogCandidate, ItemDescription

if TYPE_CHECKING:
    from shelf_agent.catalog.registry import SettingsRegistry

logger = logging.getLogger(__name__)


class CatalogResolutionChain:
    """Fixed-priority list of catalog adapters."""

    def __init__(self, adapters: Sequence[CatalogAdapter]) -> None:
        self.adapters = list(adapters)

    def adapters_for(self, kind: ShelfKind | str | None) -> list[CatalogAdapter]:
        """
        Configured adapters that support a shelf kind, in priority order.

        Args:
            kind: Shelf kind or alias.
        """
        owners = []
        for adapter in self.adapters:
            if not adapter.is_configured():
                logger.debug(f"Skipping unconfigured provider {adapter.name}")
                continue
            if adapter.supports_shelf_type(kind):
                owners.append(adapter)
        return owners

    def adapter_for(self, kind: ShelfKind | str | None) -> CatalogAdapter | None:
        """Primary adapter for a kind, or None when no provider covers it."""
        owners = self.adapters_for(kind)
        return owners[0] if owners else None

    def supports(self, kind: ShelfKind | str | None) -> bool:
        return self.adapter_for(kind) is not None

    async def lookup(
        self, item: ItemDescription, kind: ShelfKind | str | None = None, retries: int | None = None
    ) -> LookupResult:
        """Look up one item, falling back through every owning provider."""
        result = LookupResult(index=None, item=item, status=LookupStatus.UNRESOLVED)
        for adapter in self.adapters_for(kind or item.kind):
            result = await adapter.lookup(item, retries=retries)
            if result.resolved:
                break
        return result

    async def safe_lookup(
        self, item: ItemDescription, kind: ShelfKind | str | None = None, retries: int | None = None
    ) -> CatalogCandidate | None:
        result = await self.lookup(item, kind, retries)
        return result.candidate

    async def safe_lookup_many(
        self, item: ItemDescription, kind: ShelfKind | str | None = None, limit: int = 5
    ) -> list[CatalogCandidate]:
        """Candidates from the first owning provider that returns any."""
        for adapter in self.adapters_for(kind or item.kind):
            candidates = await adapter.safe_lookup_many(item, limit=limit)
            if candidates:
                return candidates
        return []

    async def lookup_many(
        self,
        items: Sequence[ItemDescription],
        kind: ShelfKind | str,
        retries: int | None = None,
    ) -> BatchLookupResult:
        """
        Resolve a batch of items of one shelf kind.

        Each owning provider receives only the items its predecessors left
        unresolved. Result and warning indexes always refer to positions
        in `items`. When no provider owns the kind, every item comes back
        unresolved with a single "no-provider" warning.
        """
        results = [
            LookupResult(index=i, item=item, status=LookupStatus.UNRESOLVED)
            for i, item in enumerate(items)
        ]
        warnings: list[LookupWarning] = []

        adapters = self.adapters_for(kind)
        if not adapters:
            label = kind.value if isinstance(kind, ShelfKind) else str(kind)
            logger.info(f"No catalog provider configured for shelf kind '{label}'")
            if items:
                warnings.append(
                    LookupWarning(
                        type="no-provider",
                        provider="",
                        message=f"No catalog provider for shelf kind '{label}'",
                    )
                )
            return BatchLookupResult(results=results, warnings=warnings)

        pending = list(range(len(items)))
        for adapter in adapters:
            if not pending:
                break
            logger.info(f"Resolving {len(pending)} items with provider {adapter.name}")
            batch = await adapter.lookup_first_pass([items[i] for i in pending], retries=retries)

            still_pending = []
            for position, lookup in zip(pending, batch.results):
                warning = replace(lookup.warning, index=position) if lookup.warning else None
                if warning is not None:
                    warnings.append(warning)
                results[position] = replace(lookup, index=position, warning=warning)
                if not lookup.resolved:
                    still_pending.append(position)
            pending = still_pending

        return BatchLookupResult(results=results, warnings=warnings)


def build_default_chain(
    registry: SettingsRegistry,
    **adapter_kwargs: object,
) -> CatalogResolutionChain:
    """
    Build a chain from the enabled providers in a settings registry.

    Args:
        registry: Loaded settings registry; provider order is preserved.
        **adapter_kwargs: Passed to every adapter constructor.

    Raises:
        ValueError: If a provider names an unknown adapter type.
    """
    adapters: list[CatalogAdapter] = []
    for provider in registry.list_enabled_providers():
        adapter = get_adapter(
            provider.adapter,
            provider,
            user_agent=registry.global_config.user_agent,
            **adapter_kwargs,
        )
        if adapter is None:
            raise ValueError(f"Unknown adapter type '{provider.adapter}' for provider {provider.name}")
        adapters.append(adapter)
    return CatalogResolutionChain(adapters)
