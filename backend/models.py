"""models.py - domain records passed between the core components and the routes.

Rows never leave database.py as raw records; the components translate them into
these frozen dataclasses. Account carries no password hash.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

# Movies carry no season/episode; the unique key stores this instead of NULL.
NO_EPISODE = -1


class Role(str, enum.Enum):
    STANDARD = 'standard'
    ADMINISTRATOR = 'administrator'


class MediaType(str, enum.Enum):
    MOVIE = 'movie'
    EPISODE = 'episode'


@dataclass(frozen=True)
class Account:
    identifier: str
    role: Role
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATOR


@dataclass(frozen=True)
class MediaKey:
    media_type: str
    title_id: int
    season: Optional[int] = None
    episode: Optional[int] = None

    @classmethod
    def movie(cls, title_id: int) -> 'MediaKey':
        return cls(MediaType.MOVIE.value, title_id)

    @classmethod
    def episode_of(cls, title_id: int, season: int, episode: int) -> 'MediaKey':
        return cls(MediaType.EPISODE.value, title_id, season, episode)


@dataclass(frozen=True)
class WatchProgress:
    account_id: str
    key: MediaKey
    position: float
    updated_at: datetime
    id: Optional[int] = None
    duration: Optional[float] = None
    completed: bool = False
    title: Optional[str] = None
    poster_path: Optional[str] = None
    episode_title: Optional[str] = None

    @property
    def percent(self) -> Optional[float]:
        if not self.duration:
            return None
        return round(min(self.position / self.duration, 1.0) * 100, 1)

    def as_dict(self) -> dict:
        return {
            'id': self.id,
            'media_type': self.key.media_type,
            'title_id': self.key.title_id,
            'season': self.key.season,
            'episode': self.key.episode,
            'position': self.position,
            'duration': self.duration,
            'completed': self.completed,
            'title': self.title,
            'poster_path': self.poster_path,
            'episode_title': self.episode_title,
            'updated_at': self.updated_at.isoformat(),
        }


class ProgressReport(BaseModel):
    media_type: str
    title_id: int
    position: float
    season: Optional[int] = None
    episode: Optional[int] = None
    duration: Optional[float] = None
    completed: bool = False
    title: Optional[str] = None
    poster_path: Optional[str] = None
    episode_title: Optional[str] = None

    def media_key(self) -> MediaKey:
        # the embedded player reports series as "tv"
        media_type = MediaType.EPISODE.value if self.media_type == 'tv' else self.media_type
        return MediaKey(media_type, self.title_id, self.season, self.episode)
