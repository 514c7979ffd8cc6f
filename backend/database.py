import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Optional

from databases import Database
from sqlalchemy import (Boolean, Column, DateTime, Float, ForeignKey, Integer, MetaData, String, Table, Text,
                        UniqueConstraint)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from errors import StorageError

metadata = MetaData()

accounts = Table(
    'accounts', metadata,
    Column('id', Integer, primary_key=True),
    Column('username', String, unique=True, index=True, nullable=False),
    Column('password_hash', String, nullable=False),
    Column('role', String, nullable=False, default='standard'),
    Column('created_at', DateTime, nullable=False, default=datetime.utcnow),
)

sessions = Table(
    'sessions', metadata,
    Column('token', String, primary_key=True),
    Column('username', String, ForeignKey('accounts.username', ondelete='CASCADE'), index=True, nullable=False),
    Column('issued_at', DateTime, nullable=False),
    Column('expires_at', DateTime, index=True, nullable=False),
)

watch_progress = Table(
    'watch_progress', metadata,
    Column('id', Integer, primary_key=True),
    Column('username', String, ForeignKey('accounts.username', ondelete='CASCADE'), nullable=False),
    Column('media_type', String, nullable=False),
    Column('title_id', Integer, nullable=False),
    Column('season', Integer, nullable=False, default=-1),
    Column('episode', Integer, nullable=False, default=-1),
    Column('position', Float, nullable=False, default=0.0),
    Column('duration', Float, nullable=True),
    Column('completed', Boolean, nullable=False, default=False),
    Column('title', String, nullable=True),
    Column('poster_path', String, nullable=True),
    Column('episode_title', String, nullable=True),
    Column('updated_at', DateTime, index=True, nullable=False),
    UniqueConstraint('username', 'media_type', 'title_id', 'season', 'episode', name='uq_watch_progress_key'),
)

# simple cache table for metadata provider responses
cache = Table(
    'cache', metadata,
    Column('key', String, primary_key=True),
    Column('value', Text),
    Column('timestamp', DateTime, default=datetime.utcnow),
)

CACHE_EXPIRY_DETAIL = timedelta(hours=24)
CACHE_EXPIRY_TREND = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.utcnow()


def create_database(url: str) -> Database:
    return Database(url)


def sync_url(url: str) -> str:
    if url.startswith('postgresql+asyncpg://'):
        return url.replace('postgresql+asyncpg://', 'postgresql://')
    if url.startswith('sqlite+aiosqlite://'):
        return url.replace('+aiosqlite', '')
    return url


def _async_url(url: str) -> str:
    if url.startswith('sqlite://'):
        return url.replace('sqlite://', 'sqlite+aiosqlite://', 1)
    if url.startswith('postgresql://'):
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


async def init_database(db: Database) -> None:
    """Create missing tables and connect the shared handle."""
    engine = create_async_engine(_async_url(str(db.url)), echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
    finally:
        await engine.dispose()
    if not db.is_connected:
        await db.connect()


async def close_database(db: Database) -> None:
    if db.is_connected:
        await db.disconnect()


def dialect_insert(db: Database, table: Table):
    """INSERT construct supporting ON CONFLICT for the handle's dialect."""
    if db.url.dialect == 'postgresql':
        return postgresql.insert(table)
    return sqlite.insert(table)


@contextmanager
def storage_errors(operation: str):
    try:
        yield
    except (SQLAlchemyError, sqlite3.Error) as exc:
        raise StorageError(f'{operation} failed') from exc


async def get_cache(db: Database, key: str, expiry: timedelta) -> Optional[Any]:
    with storage_errors('cache read'):
        row = await db.fetch_one(cache.select().where(cache.c.key == key))
    if not row:
        return None
    ts = row['timestamp']
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts)
    if ts is None or utcnow() - ts >= expiry:
        return None
    try:
        return json.loads(row['value']) if row['value'] else None
    except ValueError:
        return None


async def set_cache(db: Database, key: str, value: Any) -> None:
    stmt = dialect_insert(db, cache).values(key=key, value=json.dumps(value), timestamp=utcnow())
    stmt = stmt.on_conflict_do_update(
        index_elements=[cache.c.key],
        set_={'value': stmt.excluded.value, 'timestamp': stmt.excluded.timestamp},
    )
    with storage_errors('cache write'):
        await db.execute(stmt)
