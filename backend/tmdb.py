from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import structlog
from databases import Database

from database import CACHE_EXPIRY_DETAIL, CACHE_EXPIRY_TREND, get_cache, set_cache
from errors import MetadataError

logger = structlog.get_logger()

TMDB_BASE_URL = 'https://api.themoviedb.org/3'
TMDB_IMAGE_BASE = 'https://image.tmdb.org/t/p'

# /genre/movie/list ids, used for "genre:<name>" queries without a round trip
GENRE_IDS = {
    'action': 28, 'adventure': 12, 'animation': 16, 'comedy': 35, 'crime': 80,
    'documentary': 99, 'drama': 18, 'family': 10751, 'fantasy': 14, 'history': 36,
    'horror': 27, 'music': 10402, 'mystery': 9648, 'romance': 10749,
    'science fiction': 878, 'sci-fi': 878, 'tv movie': 10770, 'thriller': 53,
    'war': 10752, 'western': 37,
}


def image_url(path: Optional[str], size: str = 'w500') -> Optional[str]:
    return f'{TMDB_IMAGE_BASE}/{size}{path}' if path else None


def _tmdb_kind(media_type: str) -> str:
    return 'movie' if media_type == 'movie' else 'tv'


class TmdbClient:
    def __init__(self, api_key: Optional[str], db: Database, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.db = db
        self._client = httpx.AsyncClient(base_url=TMDB_BASE_URL, timeout=30, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _auth_header(self) -> str:
        if self.api_key.startswith('Bearer '):
            return self.api_key
        return f'Bearer {self.api_key}'

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_key:
            raise MetadataError('TMDB_API_KEY is not configured')
        try:
            resp = await self._client.get(path, params=params, headers={'Authorization': self._auth_header()})
        except httpx.HTTPError as exc:
            logger.error('tmdb_request_failed', path=path, error=str(exc))
            raise MetadataError(f'TMDb request failed: {path}') from exc
        if resp.status_code != 200:
            logger.error('tmdb_error', path=path, status=resp.status_code)
            raise MetadataError(f'TMDb API error {resp.status_code}: {path}')
        return resp.json()

    async def _cached(self, key: str, expiry: timedelta, path: str, params: Optional[Dict[str, Any]] = None):
        cached = await get_cache(self.db, key, expiry)
        if cached is not None:
            return cached
        data = await self._get(path, params)
        await set_cache(self.db, key, data)
        return data

    async def search(self, query: str, page: int = 1) -> Dict[str, Any]:
        data = await self._get('/search/multi', {'query': query, 'page': page, 'include_adult': 'false'})
        data['results'] = [r for r in data.get('results', []) if r.get('media_type') != 'person']
        return data

    async def search_person(self, name: str) -> Optional[int]:
        data = await self._get('/search/person', {'query': name})
        results = data.get('results') or []
        return results[0].get('id') if results else None

    async def discover(self, query: str = '', year: Optional[int] = None, genre: Optional[str] = None,
                       min_rating: Optional[float] = None, sort_by: str = 'popularity.desc',
                       page: int = 1) -> Dict[str, Any]:
        params: Dict[str, Any] = {'sort_by': sort_by, 'page': page, 'include_adult': 'false'}
        if query.startswith('genre:'):
            genre = query[len('genre:'):]
        elif query.startswith('actor:'):
            person = await self.search_person(query[len('actor:'):].strip())
            if person:
                params['with_cast'] = person
        elif query.startswith('director:'):
            person = await self.search_person(query[len('director:'):].strip())
            if person:
                params['with_crew'] = person
        if genre:
            genre_id = GENRE_IDS.get(genre.strip().lower())
            params['with_genres'] = genre_id if genre_id else genre
        if year:
            params['primary_release_year'] = year
        if min_rating is not None:
            params['vote_average.gte'] = min_rating
        return await self._get('/discover/movie', params)

    async def details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        kind = _tmdb_kind(media_type)
        return await self._cached(
            f'detail_{kind}_{tmdb_id}', CACHE_EXPIRY_DETAIL,
            f'/{kind}/{tmdb_id}', {'append_to_response': 'credits,similar'},
        )

    async def trending(self, media_type: str, window: str = 'week') -> Dict[str, Any]:
        if window not in ('day', 'week'):
            raise ValueError(f'unsupported trending window {window!r}')
        if media_type not in ('all', 'movie', 'tv', 'person'):
            raise ValueError(f'unsupported media type {media_type!r}')
        return await self._cached(f'trending_{media_type}_{window}', CACHE_EXPIRY_TREND,
                                  f'/trending/{media_type}/{window}')

    async def popular(self, media_type: str, page: int = 1) -> Dict[str, Any]:
        kind = _tmdb_kind(media_type)
        return await self._cached(f'popular_{kind}_{page}', CACHE_EXPIRY_TREND, f'/{kind}/popular', {'page': page})

    async def genres(self) -> List[Dict[str, Any]]:
        data = await self._cached('genres_movie', CACHE_EXPIRY_DETAIL, '/genre/movie/list')
        return data.get('genres', [])

    async def trending_searches(self) -> List[Dict[str, Any]]:
        combined: List[Dict[str, Any]] = []
        for media_type in ('movie', 'tv'):
            try:
                combined.extend((await self.trending(media_type, 'day')).get('results', []))
            except MetadataError:
                continue
        return combined[:10]
