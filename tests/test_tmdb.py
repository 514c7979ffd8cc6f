"""Tests for the TMDB client and its cache."""

from typing import List

import httpx
import pytest
import pytest_asyncio

from errors import MetadataError
from tmdb import TmdbClient, image_url


class Recorder:
    """MockTransport handler that records requests and replays canned routes."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path.removeprefix("/3"))
        if route is None:
            return httpx.Response(404, json={"status_message": "not found"})
        return route(request) if callable(route) else httpx.Response(200, json=route)

    def paths(self):
        return [r.url.path for r in self.requests]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder({
        "/movie/42": {"id": 42, "title": "The Answer"},
        "/search/multi": {"results": [
            {"id": 1, "media_type": "movie", "title": "Film"},
            {"id": 2, "media_type": "person", "name": "Somebody"},
            {"id": 3, "media_type": "tv", "name": "Show"},
        ]},
        "/search/person": {"results": [{"id": 500, "name": "Famous Actor"}]},
        "/discover/movie": {"results": []},
        "/trending/movie/day": {"results": [{"id": i} for i in range(8)]},
        "/trending/tv/day": {"results": [{"id": 100 + i} for i in range(8)]},
        "/genre/movie/list": {"genres": [{"id": 35, "name": "Comedy"}]},
    })


@pytest_asyncio.fixture
async def tmdb(db, recorder: Recorder):
    client = TmdbClient("test-token", db, transport=httpx.MockTransport(recorder))
    yield client
    await client.aclose()


class TestRequests:
    async def test_bearer_header(self, tmdb: TmdbClient, recorder: Recorder):
        await tmdb.search("film")
        assert recorder.requests[0].headers["authorization"] == "Bearer test-token"

    async def test_missing_key(self, db):
        client = TmdbClient(None, db, transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        with pytest.raises(MetadataError):
            await client.search("film")
        await client.aclose()

    async def test_non_200_raises(self, tmdb: TmdbClient):
        with pytest.raises(MetadataError):
            await tmdb.details("movie", 999)

    async def test_transport_error_raises(self, db):
        def boom(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = TmdbClient("test-token", db, transport=httpx.MockTransport(boom))
        with pytest.raises(MetadataError):
            await client.popular("movie")
        await client.aclose()


class TestCache:
    async def test_details_cached(self, tmdb: TmdbClient, recorder: Recorder):
        first = await tmdb.details("movie", 42)
        second = await tmdb.details("movie", 42)
        assert first == second == {"id": 42, "title": "The Answer"}
        assert recorder.paths() == ["/3/movie/42"]

    async def test_search_not_cached(self, tmdb: TmdbClient, recorder: Recorder):
        await tmdb.search("film")
        await tmdb.search("film")
        assert len(recorder.requests) == 2

    async def test_failures_not_cached(self, tmdb: TmdbClient, recorder: Recorder):
        for _ in range(2):
            with pytest.raises(MetadataError):
                await tmdb.details("tv", 1)
        assert len(recorder.requests) == 2


class TestQueries:
    async def test_search_drops_people(self, tmdb: TmdbClient):
        data = await tmdb.search("anything")
        assert [r["id"] for r in data["results"]] == [1, 3]

    async def test_discover_genre_prefix(self, tmdb: TmdbClient, recorder: Recorder):
        await tmdb.discover("genre:Comedy", year=1999, min_rating=7.5)
        params = recorder.requests[-1].url.params
        assert params["with_genres"] == "35"
        assert params["primary_release_year"] == "1999"
        assert params["vote_average.gte"] == "7.5"

    async def test_discover_actor_prefix(self, tmdb: TmdbClient, recorder: Recorder):
        await tmdb.discover("actor: Famous Actor")
        assert recorder.paths() == ["/3/search/person", "/3/discover/movie"]
        assert recorder.requests[-1].url.params["with_cast"] == "500"

    async def test_trending_rejects_bad_window(self, tmdb: TmdbClient, recorder: Recorder):
        with pytest.raises(ValueError):
            await tmdb.trending("movie", "month")
        assert recorder.requests == []

    async def test_trending_searches_truncated(self, tmdb: TmdbClient):
        results = await tmdb.trending_searches()
        assert len(results) == 10
        assert results[0]["id"] == 0

    async def test_trending_searches_tolerates_failures(self, db):
        client = TmdbClient("test-token", db, transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        assert await client.trending_searches() == []
        await client.aclose()

    async def test_genres(self, tmdb: TmdbClient):
        assert await tmdb.genres() == [{"id": 35, "name": "Comedy"}]


class TestImageUrl:
    def test_builds_url(self):
        assert image_url("/a.jpg") == "https://image.tmdb.org/t/p/w500/a.jpg"
        assert image_url("/a.jpg", "original") == "https://image.tmdb.org/t/p/original/a.jpg"

    def test_missing_path(self):
        assert image_url(None) is None
