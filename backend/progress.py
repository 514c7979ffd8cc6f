import math
from datetime import datetime
from typing import List, Optional

import structlog
from databases import Database
from sqlalchemy import and_, func, select

from database import dialect_insert, storage_errors, utcnow, watch_progress
from errors import ValidationError
from models import NO_EPISODE, MediaKey, MediaType, WatchProgress

logger = structlog.get_logger()

_MEDIA_TYPES = {m.value for m in MediaType}


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_non_negative(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def validate_key(key: MediaKey) -> None:
    if key.media_type not in _MEDIA_TYPES:
        raise ValidationError(f'unknown media type {key.media_type!r}')
    if not _is_positive_int(key.title_id):
        raise ValidationError('title_id must be a positive integer')
    if key.media_type == MediaType.EPISODE.value:
        if not _is_positive_int(key.season) or not _is_positive_int(key.episode):
            raise ValidationError('season and episode must be positive integers')
    elif key.season is not None or key.episode is not None:
        raise ValidationError('movies do not have seasons or episodes')


def _key_columns(key: MediaKey) -> dict:
    return {
        'media_type': key.media_type,
        'title_id': key.title_id,
        'season': key.season if key.season is not None else NO_EPISODE,
        'episode': key.episode if key.episode is not None else NO_EPISODE,
    }


def _to_progress(row) -> WatchProgress:
    season = row['season']
    episode = row['episode']
    updated = row['updated_at']
    if isinstance(updated, str):
        updated = datetime.fromisoformat(updated)
    return WatchProgress(
        id=row['id'],
        account_id=row['username'],
        key=MediaKey(
            row['media_type'],
            row['title_id'],
            None if season == NO_EPISODE else season,
            None if episode == NO_EPISODE else episode,
        ),
        position=row['position'],
        duration=row['duration'],
        completed=bool(row['completed']),
        title=row['title'],
        poster_path=row['poster_path'],
        episode_title=row['episode_title'],
        updated_at=updated,
    )


class ProgressTracker:
    """Per-account playback positions, one row per media key.

    Writes are a single INSERT .. ON CONFLICT DO UPDATE, so two tabs reporting
    the same title race inside the storage engine and the last commit wins.
    """

    def __init__(self, db: Database):
        self.db = db

    async def save(
        self,
        account_id: str,
        key: MediaKey,
        position: float,
        *,
        duration: Optional[float] = None,
        completed: bool = False,
        title: Optional[str] = None,
        poster_path: Optional[str] = None,
        episode_title: Optional[str] = None,
    ) -> WatchProgress:
        validate_key(key)
        if not _is_non_negative(position):
            raise ValidationError('position must be a non-negative number of seconds')
        if duration is not None and not _is_non_negative(duration):
            raise ValidationError('duration must be a non-negative number of seconds')

        now = utcnow()
        values = dict(
            username=account_id,
            position=float(position),
            duration=float(duration) if duration is not None else None,
            completed=bool(completed),
            title=title,
            poster_path=poster_path,
            episode_title=episode_title,
            updated_at=now,
            **_key_columns(key),
        )
        stmt = dialect_insert(self.db, watch_progress).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                watch_progress.c.username,
                watch_progress.c.media_type,
                watch_progress.c.title_id,
                watch_progress.c.season,
                watch_progress.c.episode,
            ],
            set_={
                'position': stmt.excluded.position,
                'duration': func.coalesce(stmt.excluded.duration, watch_progress.c.duration),
                'completed': stmt.excluded.completed,
                'title': func.coalesce(stmt.excluded.title, watch_progress.c.title),
                'poster_path': func.coalesce(stmt.excluded.poster_path, watch_progress.c.poster_path),
                'episode_title': func.coalesce(stmt.excluded.episode_title, watch_progress.c.episode_title),
                'updated_at': stmt.excluded.updated_at,
            },
        )
        with storage_errors('progress save'):
            await self.db.execute(stmt)
        logger.debug('progress_saved', account=account_id, media_type=key.media_type,
                     title_id=key.title_id, position=position)
        return WatchProgress(
            account_id=account_id,
            key=key,
            position=float(position),
            updated_at=now,
            duration=duration,
            completed=bool(completed),
            title=title,
            poster_path=poster_path,
            episode_title=episode_title,
        )

    async def list(self, account_id: str) -> List[WatchProgress]:
        """All progress rows for the account, most recently updated first."""
        q = (
            watch_progress.select()
            .where(watch_progress.c.username == account_id)
            .order_by(watch_progress.c.updated_at.desc(), watch_progress.c.id.desc())
        )
        with storage_errors('progress list'):
            rows = await self.db.fetch_all(q)
        return [_to_progress(r) for r in rows]

    async def get(self, account_id: str, key: MediaKey) -> Optional[WatchProgress]:
        validate_key(key)
        cols = _key_columns(key)
        q = watch_progress.select().where(and_(
            watch_progress.c.username == account_id,
            *[watch_progress.c[name] == value for name, value in cols.items()],
        ))
        with storage_errors('progress get'):
            row = await self.db.fetch_one(q)
        return _to_progress(row) if row else None

    async def remove(self, account_id: str, progress_id: int) -> bool:
        cond = and_(watch_progress.c.id == progress_id, watch_progress.c.username == account_id)
        with storage_errors('progress remove'):
            async with self.db.transaction():
                found = await self.db.fetch_val(select(watch_progress.c.id).where(cond))
                if found is None:
                    return False
                await self.db.execute(watch_progress.delete().where(cond))
        return True

    async def clear(self, account_id: str) -> int:
        cond = watch_progress.c.username == account_id
        with storage_errors('progress clear'):
            async with self.db.transaction():
                count = await self.db.fetch_val(select(func.count()).select_from(watch_progress).where(cond))
                await self.db.execute(watch_progress.delete().where(cond))
        logger.info('progress_cleared', account=account_id, count=count)
        return count
