"""Metadata-backed pages and JSON routes, served against a mocked TMDB."""

from httpx import AsyncClient


class TestBrowsePages:
    async def test_home_lists_trending(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert "The Answer" in response.text
        assert "Seven Seasons" in response.text

    async def test_home_shows_signed_in_account(self, authed_client: AsyncClient):
        response = await authed_client.get("/")
        assert "admin" in response.text
        assert "/logout" in response.text

    async def test_movie_detail(self, client: AsyncClient):
        response = await client.get("/movie/42")
        assert response.status_code == 200
        assert "Deep thought." in response.text
        assert "/player/movie/42" in response.text

    async def test_tv_detail_links_episodes(self, client: AsyncClient):
        response = await client.get("/tv/7")
        assert response.status_code == 200
        assert "/player/tv/7?season=1&amp;episode=3" in response.text

    async def test_unknown_title_is_502(self, client: AsyncClient):
        response = await client.get("/movie/1")
        assert response.status_code == 502


class TestPlayer:
    async def test_anonymous_player_has_no_reporter(self, client: AsyncClient):
        response = await client.get("/player/movie/42")
        assert response.status_code == 200
        assert "https://www.vidking.net/embed/movie/42" in response.text
        assert "/api/progress" not in response.text

    async def test_player_resumes_saved_position(self, authed_client: AsyncClient):
        await authed_client.post("/api/progress", json={"media_type": "movie", "title_id": 42, "position": 300.7})
        response = await authed_client.get("/player/movie/42")
        assert "progress=300" in response.text
        assert "/api/progress" in response.text

    async def test_reporter_only_trusts_player_origin(self, authed_client: AsyncClient):
        response = await authed_client.get("/player/movie/42")
        assert 'const playerOrigin = "https://www.vidking.net";' in response.text
        assert "event.origin !== playerOrigin" in response.text

    async def test_completed_title_starts_over(self, authed_client: AsyncClient):
        await authed_client.post("/api/progress", json={
            "media_type": "movie", "title_id": 42, "position": 6000, "completed": True,
        })
        response = await authed_client.get("/player/movie/42")
        assert "progress=" not in response.text

    async def test_tv_requires_season_and_episode(self, client: AsyncClient):
        assert (await client.get("/player/tv/7")).status_code == 400
        response = await client.get("/player/tv/7?season=1&episode=2")
        assert response.status_code == 200
        assert "/embed/tv/7/1/2" in response.text

    async def test_unknown_media_type(self, client: AsyncClient):
        assert (await client.get("/player/podcast/1")).status_code == 404


class TestMetadataApi:
    async def test_popular(self, client: AsyncClient):
        response = await client.get("/api/movies/popular")
        assert response.status_code == 200
        assert response.json()["results"][0]["id"] == 7

    async def test_trending_bad_window(self, client: AsyncClient):
        assert (await client.get("/api/trending/movie/year")).status_code == 400

    async def test_movie_streams(self, client: AsyncClient):
        response = await client.get("/api/movie/42/streams")
        [source] = response.json()
        assert source["server"] == "vidking"
        assert source["id"].startswith("https://www.vidking.net/embed/movie/42")

    async def test_tv_streams_need_episode(self, client: AsyncClient):
        assert (await client.get("/api/tv/7/streams")).status_code == 400
