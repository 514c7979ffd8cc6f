"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import accounts
from accounts import CredentialStore
from app import create_app
from config import Settings
from database import close_database, create_database, init_database
from progress import ProgressTracker
from sessions import SessionManager

# Minimum bcrypt cost keeps the suite fast; verification reads the cost from the hash.
accounts.pwd_context.update(bcrypt__rounds=4)

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin123"


class FakeClock:
    """Controllable naive-UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def tmdb_handler(request: httpx.Request) -> httpx.Response:
    """Canned TMDB responses for the pages that render metadata."""
    path = request.url.path.removeprefix("/3")
    if path.startswith("/trending/"):
        return httpx.Response(200, json={"page": 1, "results": [
            {"id": 42, "media_type": "movie", "title": "The Answer", "poster_path": "/answer.jpg"},
        ]})
    if path in ("/tv/popular", "/movie/popular"):
        return httpx.Response(200, json={"page": 1, "results": [
            {"id": 7, "name": "Seven Seasons", "poster_path": None},
        ]})
    if path == "/movie/42":
        return httpx.Response(200, json={
            "id": 42, "title": "The Answer", "overview": "Deep thought.", "poster_path": "/answer.jpg",
            "release_date": "2005-04-28", "vote_average": 6.7, "genres": [{"id": 35, "name": "Comedy"}],
        })
    if path == "/tv/7":
        return httpx.Response(200, json={
            "id": 7, "name": "Seven Seasons", "overview": "", "poster_path": None,
            "first_air_date": "2010-01-01", "vote_average": 8.0, "genres": [],
            "seasons": [{"season_number": 1, "name": "Season 1", "episode_count": 3}],
        })
    if path == "/genre/movie/list":
        return httpx.Response(200, json={"genres": [{"id": 35, "name": "Comedy"}]})
    return httpx.Response(404, json={"status_message": "not found"})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        tmdb_api_key="test-token",
        session_sweep_interval_seconds=0,
        seed_admin_username=ADMIN_USERNAME,
        seed_admin_password=ADMIN_PASSWORD,
    )


@pytest_asyncio.fixture
async def db(settings: Settings):
    database = create_database(settings.database_url)
    await init_database(database)
    yield database
    await close_database(database)


@pytest_asyncio.fixture
async def credentials(db) -> CredentialStore:
    store = CredentialStore(db)
    await store.ensure_seed_account(ADMIN_USERNAME, ADMIN_PASSWORD)
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(db, clock: FakeClock) -> SessionManager:
    return SessionManager(db, ttl=timedelta(days=7), clock=clock)


@pytest.fixture
def tracker(db) -> ProgressTracker:
    return ProgressTracker(db)


@pytest_asyncio.fixture
async def app(settings: Settings):
    """Application with its real lifespan (tables, seed account) and a mocked TMDB."""
    application = create_app(settings, tmdb_transport=httpx.MockTransport(tmdb_handler))
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient) -> AsyncClient:
    """Client holding a session cookie for the seeded administrator."""
    response = await client.post("/login", data={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert response.status_code == 303
    return client
