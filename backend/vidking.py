from dataclasses import dataclass
from typing import List, Optional

import structlog

logger = structlog.get_logger()

VIDKING_BASE_URL = 'https://www.vidking.net'


@dataclass
class EmbedOptions:
    color: Optional[str] = 'e50914'
    auto_play: bool = True
    next_episode: bool = True
    episode_selector: bool = True
    progress: Optional[int] = None  # resume offset in seconds

    def query_string(self) -> str:
        params = []
        if self.color:
            params.append(f'color={self.color}')
        if self.auto_play:
            params.append('autoPlay=true')
        if self.next_episode:
            params.append('nextEpisode=true')
        if self.episode_selector:
            params.append('episodeSelector=true')
        if self.progress is not None:
            params.append(f'progress={self.progress}')
        return f"?{'&'.join(params)}" if params else ''


@dataclass
class StreamSource:
    id: str
    name: str
    server: str
    quality: Optional[str] = None
    language: Optional[str] = None


def embed_url(media_type: str, tmdb_id: int, season: Optional[int] = None, episode: Optional[int] = None,
              options: Optional[EmbedOptions] = None) -> str:
    options = options or EmbedOptions()
    if media_type == 'movie':
        url = f'{VIDKING_BASE_URL}/embed/movie/{tmdb_id}'
    elif media_type in ('tv', 'episode'):
        if season is None or episode is None:
            raise ValueError('season and episode are required for tv embeds')
        url = f'{VIDKING_BASE_URL}/embed/tv/{tmdb_id}/{season}/{episode}'
    else:
        raise ValueError(f'unsupported media type {media_type!r}')
    url += options.query_string()
    logger.debug('embed_url_built', url=url)
    return url


def streams(media_type: str, tmdb_id: int, season: Optional[int] = None,
            episode: Optional[int] = None) -> List[StreamSource]:
    return [StreamSource(
        id=embed_url(media_type, tmdb_id, season, episode),
        name='Vidking',
        server='vidking',
        quality='Auto',
        language='EN',
    )]
