"""
Adapter Base Module
===================

Defines the abstract base class for catalog provider adapters.
Adapters are responsible for:
1. Declaring which shelf kinds they own
2. Querying one external catalog and normalizing results to CatalogCandidate

The base class supplies everything else: sliding-window rate limiting,
bounded concurrency, retry with exponential backoff, result ranking and
per-item batch lookups that report failures as warnings instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

import httpx

from shelf_agent.catalog.rate_limit import SlidingWindowRateLimiter
from shelf_agent.catalog.registry import ProviderConfig
from shelf_agent.core.enums import ShelfKind, normalize_kind
from shelf_agent.core.fingerprint import fold_ocr_component
from shelf_agent.core.schema import CatalogCandidate, ItemDescription

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10
DEFAULT_BACKOFF_BASE = 0.5

# Provider edition markers that denote the canonical release
MAIN_EDITION_CATEGORIES = frozenset({"main", "main_game", "original", "standard"})


class ProviderError(Exception):
    """A catalog provider call failed."""


class ProviderRateLimitedError(ProviderError):
    """The provider answered with an explicit rate-limit response."""


class ProviderTimeoutError(ProviderError):
    """The provider did not answer in time."""


class LookupStatus(str, Enum):
    """Outcome of a single item lookup."""

    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass
class LookupWarning:
    """Non-fatal lookup problem surfaced on the run result."""

    type: str
    provider: str
    message: str
    index: int | None = None
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "provider": self.provider,
            "message": self.message,
            "index": self.index,
            "title": self.title,
        }


@dataclass
class LookupResult:
    """Result of looking up one item."""

    index: int | None
    item: ItemDescription
    status: LookupStatus
    candidate: CatalogCandidate | None = None
    warning: LookupWarning | None = None

    @property
    def resolved(self) -> bool:
        return self.status == LookupStatus.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status.value,
            "input": self.item.model_dump(mode="json"),
            "candidate": self.candidate.model_dump(mode="json") if self.candidate else None,
            "warning": self.warning.to_dict() if self.warning else None,
        }


@dataclass
class BatchLookupResult:
    """Per-index results of a batch lookup plus the warnings it raised."""

    results: list[LookupResult]
    warnings: list[LookupWarning]

    @property
    def resolved(self) -> list[LookupResult]:
        return [r for r in self.results if r.resolved]

    @property
    def unresolved(self) -> list[LookupResult]:
        return [r for r in self.results if not r.resolved]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ============================================================================
# Ranking
# ============================================================================


def title_match_rank(query_title: str, candidate_title: str) -> int:
    """
    Rank how well a candidate title matches the query.

    Returns:
        0 for an exact match (case and diacritics folded), 1 for a
        substring match in either direction, 2 for no match.
    """
    query = fold_ocr_component(query_title)
    title = fold_ocr_component(candidate_title)
    if not query or not title:
        return 2
    if query == title:
        return 0
    if query in title or title in query:
        return 1
    return 2


def is_derived_edition(candidate: CatalogCandidate) -> bool:
    """
    Whether a candidate is a remake, port, DLC or other derived edition.

    An explicit provider category wins; relational parent links are only
    consulted when the provider gives no category.
    """
    if candidate.edition_category:
        return candidate.edition_category.strip().lower() not in MAIN_EDITION_CATEGORIES
    return bool(candidate.parent_id)


def _release_key(candidate: CatalogCandidate) -> date:
    if candidate.release_date is not None:
        return candidate.release_date
    if candidate.year is not None:
        return date(candidate.year, 1, 1)
    return date.max


def rank_candidates(query_title: str, candidates: Sequence[CatalogCandidate]) -> list[CatalogCandidate]:
    """
    Order candidates best first.

    Exact titles before partial ones, canonical editions before derived
    ones, earliest release first, then highest provider match score.
    """
    return sorted(
        candidates,
        key=lambda c: (
            title_match_rank(query_title, c.title),
            is_derived_edition(c),
            _release_key(c),
            -c.match_score,
        ),
    )


def select_best(query_title: str, candidates: Sequence[CatalogCandidate]) -> CatalogCandidate | None:
    """Best candidate whose title matches the query at least partially."""
    for candidate in rank_candidates(query_title, candidates):
        if title_match_rank(query_title, candidate.title) < 2:
            return candidate
    return None


# ============================================================================
# Adapter base class
# ============================================================================


class CatalogAdapter(ABC):
    """
    Abstract base class for catalog provider adapters.

    Subclasses must implement:
    - _search(): one provider query returning normalized candidates

    Subclasses may override:
    - is_configured(): report missing credentials
    - SUPPORTS_PLATFORM_FILTER: enable the platform-filtered retry
    """

    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"
    DEFAULT_SHELF_TYPES: tuple[str, ...] = ()
    SUPPORTS_PLATFORM_FILTER: bool = False

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = "ShelfAgent/0.1",
        rate_limiter: SlidingWindowRateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            config: Provider configuration; defaults are derived from the class.
            transport: Optional httpx transport (used to stub the network).
            user_agent: User-Agent header sent to the provider.
            rate_limiter: Optional limiter override.
            sleep: Coroutine used for retry backoff.
        """
        self.config = config or ProviderConfig(
            name=self.ADAPTER_NAME,
            adapter=self.ADAPTER_NAME,
            shelf_types=list(self.DEFAULT_SHELF_TYPES),
        )
        self.name = self.config.name
        shelf_types = self.config.shelf_types or list(self.DEFAULT_SHELF_TYPES)
        self._shelf_hints = {t.strip().lower() for t in shelf_types if t}
        self._kinds = {normalize_kind(t) for t in shelf_types} - {ShelfKind.OTHER}
        self.max_retries = self.config.max_retries
        self.timeout = self.config.timeout
        self.concurrency = max(1, self.config.rate_limit.concurrency)
        self.backoff_base = float(
            self.config.custom_config.get("backoff_base", DEFAULT_BACKOFF_BASE)
        )
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter.per_second(
            self.config.rate_limit.requests_per_second, name=self.name
        )
        self._transport = transport
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._in_flight = 0
        self.peak_in_flight = 0

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def _search(
        self,
        client: httpx.AsyncClient,
        item: ItemDescription,
        limit: int,
        platform: str | None = None,
    ) -> list[CatalogCandidate]:
        """
        Run one provider query.

        Args:
            client: Shared HTTP client for this lookup.
            item: Item being looked up.
            limit: Maximum number of results to request.
            platform: When set, restrict the query to this platform/format.

        Returns:
            Normalized candidates in provider order.
        """
        pass

    def is_configured(self) -> bool:
        """Whether the adapter has the credentials it needs."""
        return True

    def supports_shelf_type(self, kind: ShelfKind | str | None) -> bool:
        """
        Check whether this provider owns a shelf kind.

        Accepts canonical kinds, their aliases, and free-form names that
        contain one of the configured shelf type hints.
        """
        if not kind:
            return False
        if normalize_kind(kind) in self._kinds:
            return True
        raw = str(kind.value if isinstance(kind, ShelfKind) else kind).strip().lower()
        return any(hint in raw for hint in self._shelf_hints)

    def get_info(self) -> dict[str, Any]:
        """Get adapter information."""
        return {
            "name": self.name,
            "adapter": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
            "shelf_types": sorted(self._shelf_hints),
            "configured": self.is_configured(),
            "concurrency": self.concurrency,
            "requests_per_second": self.config.rate_limit.requests_per_second,
        }

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, translating transport failures into provider errors."""
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self.name}: request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name}: request failed: {e}") from e

        if response.status_code == 429:
            raise ProviderRateLimitedError(f"{self.name}: rate limited (HTTP 429)")
        if response.status_code >= 400:
            raise ProviderError(f"{self.name}: HTTP {response.status_code}")
        return response

    async def _throttled_search(
        self,
        client: httpx.AsyncClient,
        item: ItemDescription,
        limit: int,
        platform: str | None,
    ) -> list[CatalogCandidate]:
        async with self._semaphore:
            await self.rate_limiter.acquire()
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                return await self._search(client, item, limit, platform)
            finally:
                self._in_flight -= 1

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_candidates(
        self, item: ItemDescription, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[CatalogCandidate]:
        """
        Query the provider and return ranked candidates.

        The first query never filters by category or platform. When it
        returns nothing and the item carries a platform hint, one retry is
        made with a platform filter appended.

        Raises:
            ProviderError: On any provider failure.
        """
        async with self._client() as client:
            candidates = await self._throttled_search(client, item, limit, None)
            if not candidates and item.platform and self.SUPPORTS_PLATFORM_FILTER:
                logger.info(
                    f"{self.name}: no results for '{item.title}', "
                    f"retrying with platform filter '{item.platform}'"
                )
                candidates = await self._throttled_search(client, item, limit, item.platform)
        return rank_candidates(item.title, candidates)

    async def _lookup_with_retries(
        self,
        item: ItemDescription,
        limit: int,
        retries: int | None,
        index: int | None,
    ) -> tuple[list[CatalogCandidate], LookupWarning | None]:
        attempts = self.max_retries if retries is None else max(0, retries)
        warning_type = "provider-error"
        last_error: Exception | None = None

        for attempt in range(attempts + 1):
            try:
                return await self.find_candidates(item, limit), None
            except ProviderRateLimitedError as e:
                warning_type, last_error = "rate-limit", e
            except ProviderTimeoutError as e:
                warning_type, last_error = "timeout", e
            except Exception as e:
                logger.error(f"{self.name}: lookup failed for '{item.title}': {e}")
                return [], LookupWarning(
                    type="provider-error",
                    provider=self.name,
                    message=str(e),
                    index=index,
                    title=item.title,
                )

            if attempt < attempts:
                delay = self.backoff_base * (2**attempt)
                logger.warning(
                    f"{self.name}: {warning_type} for '{item.title}', retrying in "
                    f"{delay:.2f}s (attempt {attempt + 1}/{attempts + 1})"
                )
                await self._sleep(delay)

        logger.warning(
            f"{self.name}: giving up on '{item.title}' after {attempts + 1} attempts: {last_error}"
        )
        return [], LookupWarning(
            type=warning_type,
            provider=self.name,
            message=str(last_error),
            index=index,
            title=item.title,
        )

    async def lookup(
        self,
        item: ItemDescription,
        retries: int | None = None,
        index: int | None = None,
    ) -> LookupResult:
        """
        Look up one item, never raising.

        Args:
            item: Item to resolve.
            retries: Retry budget for timeouts and rate limits (defaults to config).
            index: Position of the item in its batch, echoed on warnings.

        Returns:
            LookupResult carrying the best title-matching candidate, if any.
        """
        candidates, warning = await self._lookup_with_retries(
            item, DEFAULT_SEARCH_LIMIT, retries, index
        )
        best = select_best(item.title, candidates)
        return LookupResult(
            index=index,
            item=item,
            status=LookupStatus.RESOLVED if best else LookupStatus.UNRESOLVED,
            candidate=best,
            warning=warning,
        )

    async def safe_lookup(
        self, item: ItemDescription, retries: int | None = None
    ) -> CatalogCandidate | None:
        """Best candidate for an item, or None when unresolved."""
        result = await self.lookup(item, retries=retries)
        return result.candidate

    async def safe_lookup_many(
        self, item: ItemDescription, limit: int = 5, retries: int | None = None
    ) -> list[CatalogCandidate]:
        """Up to limit ranked candidates for an item; empty on failure."""
        candidates, _ = await self._lookup_with_retries(item, max(limit, 1), retries, None)
        return candidates[:limit]

    async def lookup_first_pass(
        self, items: Sequence[ItemDescription], retries: int | None = None
    ) -> BatchLookupResult:
        """
        Look up a batch of items with at most `concurrency` in flight.

        Args:
            items: Items to resolve.
            retries: Retry budget per item.

        Returns:
            BatchLookupResult with one result per input index.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(index: int, item: ItemDescription) -> LookupResult:
            async with semaphore:
                return await self.lookup(item, retries=retries, index=index)

        results = await asyncio.gather(*(run(i, item) for i, item in enumerate(items)))
        warnings = [r.warning for r in results if r.warning is not None]
        resolved = sum(1 for r in results if r.resolved)
        logger.info(f"{self.name}: resolved {resolved}/{len(results)} items")
        return BatchLookupResult(results=list(results), warnings=warnings)
