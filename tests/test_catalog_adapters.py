"""Tests for catalog provider adapters."""

import asyncio
import json
from datetime import date

import httpx
import pytest

from shelf_agent.catalog.adapters import get_adapter, list_adapters
from shelf_agent.catalog.adapters.base import (
    ProviderError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    is_derived_edition,
    rank_candidates,
    select_best,
    title_match_rank,
)
from shelf_agent.catalog.adapters.igdb import IgdbAdapter, build_query
from shelf_agent.catalog.adapters.openlibrary import OpenLibraryAdapter
from shelf_agent.catalog.adapters.tmdb import TmdbAdapter
from shelf_agent.catalog.rate_limit import SlidingWindowRateLimiter
from shelf_agent.catalog.registry import ProviderConfig, RateLimitConfig
from shelf_agent.core.enums import ShelfKind
from shelf_agent.core.schema import ItemDescription
from stubs import RecordingSleep, StubAdapter, candidate


def _item(title: str, creator: str | None = None, **kwargs) -> ItemDescription:
    return ItemDescription(title=title, creator=creator, kind=kwargs.pop("kind", "book"), **kwargs)


class TestRanking:
    """Tests for candidate ranking helpers."""

    def test_title_match_rank(self) -> None:
        assert title_match_rank("The Hobbit", "the hobbit") == 0
        assert title_match_rank("Hobbit", "The Hobbit") == 1
        assert title_match_rank("The Hobbit: Illustrated Edition", "The Hobbit") == 1
        assert title_match_rank("Dune", "Foundation") == 2
        assert title_match_rank("", "Dune") == 2

    def test_explicit_category_wins_over_parent(self) -> None:
        """Test that a provider category overrides relational hints."""
        assert not is_derived_edition(candidate("X", edition_category="main_game", parent_id="7"))
        assert is_derived_edition(candidate("X", edition_category="remake"))
        assert is_derived_edition(candidate("X", parent_id="7"))
        assert not is_derived_edition(candidate("X"))

    def test_rank_prefers_exact_original_earliest(self) -> None:
        """Test the exact, original, earliest ordering."""
        remake = candidate("Resident Evil", edition_category="remake", year=2002, match_score=1.0)
        original = candidate("Resident Evil", edition_category="main_game", year=1996, match_score=0.2)
        later_original = candidate("Resident Evil", edition_category="main_game", year=1998)
        partial = candidate("Resident Evil 2", edition_category="main_game", year=1990)

        ranked = rank_candidates("Resident Evil", [partial, remake, later_original, original])

        assert ranked == [original, later_original, remake, partial]

    def test_release_date_beats_year(self) -> None:
        a = candidate("Dune", release_date=date(1984, 12, 14))
        b = candidate("Dune", release_date=date(1984, 3, 1))
        assert rank_candidates("Dune", [a, b])[0] is b

    def test_match_score_breaks_ties(self) -> None:
        a = candidate("Dune", match_score=0.3)
        b = candidate("Dune", match_score=0.9)
        assert rank_candidates("Dune", [a, b])[0] is b

    def test_select_best_requires_title_match(self) -> None:
        assert select_best("Dune", [candidate("Foundation")]) is None
        assert select_best("Dune", [candidate("Foundation"), candidate("Dune Messiah")]).title == (
            "Dune Messiah"
        )


class TestLookup:
    """Tests for the base adapter lookup behavior."""

    @pytest.mark.asyncio
    async def test_resolved_lookup(self) -> None:
        adapter = StubAdapter(results={"Dune": [candidate("Dune", "Frank Herbert")]})
        result = await adapter.lookup(_item("Dune"))

        assert result.resolved
        assert result.candidate.creator == "Frank Herbert"
        assert result.warning is None

    @pytest.mark.asyncio
    async def test_zero_results_is_unresolved_without_warning(self) -> None:
        adapter = StubAdapter()
        result = await adapter.lookup(_item("Unknown Book"))

        assert not result.resolved
        assert result.warning is None

    @pytest.mark.asyncio
    async def test_platform_retry_after_empty_first_pass(self) -> None:
        """Test one filtered retry when the first query finds nothing."""
        adapter = StubAdapter(
            script=[[], [candidate("Halo", kind=ShelfKind.GAME)]],
            shelf_types=("game",),
            supports_platform=True,
        )
        result = await adapter.lookup(_item("Halo", kind="game", platform="Xbox"))

        assert result.resolved
        assert adapter.calls == [("Halo", None), ("Halo", "Xbox")]

    @pytest.mark.asyncio
    async def test_no_platform_retry_without_hint(self) -> None:
        adapter = StubAdapter(script=[[]], shelf_types=("game",), supports_platform=True)
        result = await adapter.lookup(_item("Halo", kind="game"))

        assert not result.resolved
        assert adapter.calls == [("Halo", None)]

    @pytest.mark.asyncio
    async def test_no_platform_retry_when_unsupported(self) -> None:
        adapter = StubAdapter(script=[[]])
        await adapter.lookup(_item("Dune", platform="Kindle"))
        assert adapter.calls == [("Dune", None)]

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried_with_backoff(self) -> None:
        """Test exponential backoff between rate-limited attempts."""
        adapter = StubAdapter(
            script=[
                ProviderRateLimitedError("429"),
                ProviderRateLimitedError("429"),
                [candidate("Dune")],
            ]
        )
        result = await adapter.lookup(_item("Dune"), retries=2)

        assert result.resolved
        assert result.warning is None
        assert adapter.sleeper.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self) -> None:
        """Test that exhausted retries surface a timeout warning."""
        adapter = StubAdapter(
            script=[ProviderTimeoutError("slow"), ProviderTimeoutError("slow")]
        )
        result = await adapter.lookup(_item("Dune"), retries=1, index=3)

        assert not result.resolved
        assert result.warning.type == "timeout"
        assert result.warning.index == 3
        assert result.warning.provider == "stub"
        assert len(adapter.calls) == 2
        assert adapter.sleeper.delays == [0.5]

    @pytest.mark.asyncio
    async def test_provider_error_is_not_retried(self) -> None:
        adapter = StubAdapter(script=[ProviderError("HTTP 500")])
        result = await adapter.lookup(_item("Dune"), retries=3)

        assert result.warning.type == "provider-error"
        assert len(adapter.calls) == 1
        assert adapter.sleeper.delays == []

    @pytest.mark.asyncio
    async def test_safe_lookup_many_returns_ranked(self) -> None:
        adapter = StubAdapter(
            results={"Dune": [candidate("Dune Messiah"), candidate("Dune"), candidate("Dune II")]}
        )
        candidates = await adapter.safe_lookup_many(_item("Dune"), limit=2)
        assert [c.title for c in candidates] == ["Dune", "Dune Messiah"]


class TestLookupFirstPass:
    """Tests for batch lookups."""

    @pytest.mark.asyncio
    async def test_results_keep_input_indexes(self) -> None:
        """Test that a failing item does not affect its neighbours."""
        adapter = StubAdapter(results={"A": [candidate("A")], "C": [candidate("C")]})
        items = [_item("A"), _item("B"), _item("C")]

        batch = await adapter.lookup_first_pass(items)

        assert [r.index for r in batch.results] == [0, 1, 2]
        assert [r.resolved for r in batch.results] == [True, False, True]
        assert [r.item.title for r in batch.unresolved] == ["B"]
        assert batch.warnings == []

    @pytest.mark.asyncio
    async def test_warnings_carry_index(self) -> None:
        class FlakyAdapter(StubAdapter):
            async def _search(self, client, item, limit, platform=None):
                if item.title == "B":
                    raise ProviderError("boom")
                return await super()._search(client, item, limit, platform)

        adapter = FlakyAdapter(results={"A": [candidate("A")]})
        batch = await adapter.lookup_first_pass([_item("A"), _item("B")], retries=0)

        assert len(batch.warnings) == 1
        assert batch.warnings[0].index == 1
        assert batch.warnings[0].title == "B"
        assert batch.results[0].resolved

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        """Test that no more than `concurrency` searches are in flight."""
        adapter = StubAdapter(concurrency=2, delay=0.01)
        items = [_item(f"Book {i}") for i in range(6)]

        batch = await adapter.lookup_first_pass(items)

        assert len(batch.results) == 6
        assert adapter.peak_in_flight == 2

    @pytest.mark.asyncio
    async def test_concurrency_bound_holds_across_batches(self) -> None:
        adapter = StubAdapter(concurrency=3, delay=0.01)
        first = [_item(f"A{i}") for i in range(5)]
        second = [_item(f"B{i}") for i in range(5)]

        await asyncio.gather(adapter.lookup_first_pass(first), adapter.lookup_first_pass(second))

        assert adapter.peak_in_flight <= 3


def _fast(adapter_cls, config: ProviderConfig, handler) -> object:
    return adapter_cls(
        config,
        transport=httpx.MockTransport(handler),
        rate_limiter=SlidingWindowRateLimiter(1000),
        sleep=RecordingSleep(),
    )


class TestOpenLibraryAdapter:
    """Tests for OpenLibraryAdapter against a mocked API."""

    @pytest.mark.asyncio
    async def test_search_maps_docs(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(
                200,
                json={
                    "docs": [
                        {
                            "key": "/works/OL27448W",
                            "title": "The Hobbit",
                            "author_name": ["J.R.R. Tolkien"],
                            "first_publish_year": 1937,
                            "isbn": ["9780547928227", "054792822X"],
                            "cover_i": 12345,
                            "publisher": ["Houghton Mifflin"],
                            "subject": ["Fantasy"],
                        },
                        {"title": "The Hobbit Companion", "author_name": ["David Day"]},
                    ]
                },
            )

        adapter = _fast(OpenLibraryAdapter, ProviderConfig(name="openlibrary", adapter="openlibrary"), handler)
        result = await adapter.lookup(_item("The Hobbit", "Tolkien"))

        assert seen["url"].path == "/search.json"
        assert seen["url"].params["title"] == "The Hobbit"
        assert seen["url"].params["author"] == "Tolkien"
        best = result.candidate
        assert best.title == "The Hobbit"
        assert best.creator == "J.R.R. Tolkien"
        assert best.year == 1937
        assert best.identifiers["isbn13"] == ["9780547928227"]
        assert best.identifiers["isbn10"] == ["054792822X"]
        assert best.images == ["https://covers.openlibrary.org/b/id/12345-L.jpg"]
        assert best.publisher == "Houghton Mifflin"

    @pytest.mark.asyncio
    async def test_http_429_becomes_rate_limit_warning(self) -> None:
        adapter = _fast(
            OpenLibraryAdapter,
            ProviderConfig(name="openlibrary", adapter="openlibrary"),
            lambda request: httpx.Response(429),
        )
        result = await adapter.lookup(_item("Dune"), retries=1)

        assert result.warning.type == "rate-limit"
        assert not result.resolved

    @pytest.mark.asyncio
    async def test_server_error_becomes_provider_error(self) -> None:
        adapter = _fast(
            OpenLibraryAdapter,
            ProviderConfig(name="openlibrary", adapter="openlibrary"),
            lambda request: httpx.Response(503),
        )
        result = await adapter.lookup(_item("Dune"), retries=2)
        assert result.warning.type == "provider-error"

    def test_supports_aliases(self) -> None:
        adapter = OpenLibraryAdapter()
        assert adapter.supports_shelf_type("books")
        assert adapter.supports_shelf_type(ShelfKind.BOOK)
        assert adapter.supports_shelf_type("Manga collection")
        assert not adapter.supports_shelf_type("movie")
        assert not adapter.supports_shelf_type(None)


class TestIgdbAdapter:
    """Tests for IgdbAdapter against a mocked API."""

    def test_build_query_without_platform(self) -> None:
        query = build_query('Zelda "BotW"', 10)
        assert 'search "Zelda \\"BotW\\"";' in query
        assert "where" not in query
        assert query.endswith("limit 10;")

    def test_build_query_with_platform(self) -> None:
        query = build_query("Halo", 5, "Xbox")
        assert 'where platforms.name ~ *"Xbox"* | release_dates.platform.abbreviation ~ *"Xbox"*;' in query

    def test_is_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IGDB_CLIENT_ID", raising=False)
        monkeypatch.delenv("IGDB_CLIENT_SECRET", raising=False)
        assert not IgdbAdapter().is_configured()
        monkeypatch.setenv("IGDB_CLIENT_ID", "id")
        monkeypatch.setenv("IGDB_CLIENT_SECRET", "secret")
        assert IgdbAdapter().is_configured()

    @pytest.mark.asyncio
    async def test_prefers_original_over_remake(self) -> None:
        """Test that a remake released later ranks after the original."""
        bodies: list[str] = []
        token_requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "id.twitch.tv":
                token_requests.append(request)
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            bodies.append(request.content.decode())
            assert request.headers["Authorization"] == "Bearer tok"
            assert request.headers["Client-ID"] == "cid"
            return httpx.Response(
                200,
                json=[
                    {
                        "id": 2,
                        "name": "Resident Evil",
                        "category": 8,
                        "first_release_date": 1016150400,
                        "version_parent": 1,
                    },
                    {
                        "id": 1,
                        "name": "Resident Evil",
                        "category": 0,
                        "first_release_date": 827884800,
                        "involved_companies": [
                            {"company": {"name": "Capcom"}, "developer": True, "publisher": True}
                        ],
                        "platforms": [{"name": "PlayStation"}],
                        "cover": {"image_id": "co1abc"},
                    },
                ],
            )

        config = ProviderConfig(
            name="igdb",
            adapter="igdb",
            shelf_types=["game"],
            custom_config={"client_id": "cid", "client_secret": "secret"},
        )
        adapter = _fast(IgdbAdapter, config, handler)

        first = await adapter.lookup(_item("Resident Evil", kind="game"))
        await adapter.lookup(_item("Resident Evil", kind="game"))

        assert first.candidate.identifiers == {"igdb": 1}
        assert first.candidate.edition_category == "main_game"
        assert first.candidate.creator == "Capcom"
        assert first.candidate.year == 1996
        assert first.candidate.images == [
            "https://images.igdb.com/igdb/image/upload/t_cover_big/co1abc.jpg"
        ]
        assert len(token_requests) == 1
        assert all("where" not in body for body in bodies)

    @pytest.mark.asyncio
    async def test_platform_filtered_retry(self) -> None:
        bodies: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "id.twitch.tv":
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            body = request.content.decode()
            bodies.append(body)
            if "where" not in body:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{"id": 9, "name": "Halo", "category": 0}])

        config = ProviderConfig(
            name="igdb",
            adapter="igdb",
            custom_config={"client_id": "cid", "client_secret": "secret"},
        )
        adapter = _fast(IgdbAdapter, config, handler)
        result = await adapter.lookup(_item("Halo", kind="game", platform="Xbox"))

        assert result.resolved
        assert result.candidate.platform == "Xbox"
        assert len(bodies) == 2
        assert 'platforms.name ~ *"Xbox"*' in bodies[1]


class TestTmdbAdapter:
    """Tests for TmdbAdapter."""

    def test_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TMDB_API_KEY", raising=False)
        assert not TmdbAdapter().is_configured()
        config = ProviderConfig(name="tmdb", adapter="tmdb", custom_config={"api_key": "k"})
        assert TmdbAdapter(config).is_configured()

    @pytest.mark.asyncio
    async def test_search_maps_results(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["query"] == "Alien"
            assert request.url.params["year"] == "1979"
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"id": 348, "title": "Alien", "release_date": "1979-05-25", "popularity": 50.0,
                         "poster_path": "/alien.jpg"},
                        {"id": 679, "title": "Aliens", "release_date": "1986-07-18", "popularity": 100.0},
                    ]
                },
            )

        config = ProviderConfig(
            name="tmdb", adapter="tmdb", shelf_types=["movie"], custom_config={"api_key": "k"}
        )
        adapter = _fast(TmdbAdapter, config, handler)
        result = await adapter.lookup(_item("Alien", kind="movie", year=1979, format="Blu-ray"))

        assert result.candidate.identifiers == {"tmdb": 348}
        assert result.candidate.format == "Blu-ray"
        assert result.candidate.match_score == pytest.approx(0.5)
        assert result.candidate.images == ["https://image.tmdb.org/t/p/w500/alien.jpg"]


class TestAdapterRegistry:
    """Tests for the adapter registry helpers."""

    def test_list_adapters(self) -> None:
        assert set(list_adapters()) >= {"igdb", "openlibrary", "tmdb"}

    def test_get_adapter(self) -> None:
        assert isinstance(get_adapter("openlibrary"), OpenLibraryAdapter)
        assert get_adapter("nope") is None

    def test_get_adapter_with_config(self) -> None:
        config = ProviderConfig(
            name="books2",
            adapter="openlibrary",
            rate_limit=RateLimitConfig(requests_per_second=2, concurrency=7),
        )
        adapter = get_adapter("openlibrary", config)
        assert adapter.name == "books2"
        assert adapter.concurrency == 7
        assert adapter.get_info()["configured"] is True
