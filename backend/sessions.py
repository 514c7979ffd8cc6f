"""Opaque session tokens backed by the sessions table.

A session is valid while ``now < expires_at`` and its row exists. Revocation
deletes the row; expiry is checked lazily on resolve, and the sweeper task only
removes rows that are already expired.
"""
import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from databases import Database
from sqlalchemy import func, select

from database import accounts, sessions, storage_errors, utcnow
from errors import StorageError
from models import Account, Role

logger = structlog.get_logger()

# 32 random bytes -> 256 bits, 43 urlsafe characters
TOKEN_BYTES = 32
MAX_TOKEN_LENGTH = 128
DEFAULT_TTL = timedelta(days=7)


def _as_datetime(value) -> datetime:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


class SessionManager:
    def __init__(self, db: Database, ttl: timedelta = DEFAULT_TTL,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.ttl = ttl
        self.clock = clock

    async def issue(self, account_id: str) -> str:
        token = secrets.token_urlsafe(TOKEN_BYTES)
        issued_at = self.clock()
        q = sessions.insert().values(
            token=token,
            username=account_id,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
        )
        with storage_errors('session issue'):
            await self.db.execute(q)
        logger.info('session_issued', account=account_id)
        return token

    async def resolve(self, token: Optional[str]) -> Optional[Account]:
        if not token or len(token) > MAX_TOKEN_LENGTH:
            return None
        q = (
            select(sessions.c.expires_at, accounts.c.username, accounts.c.role, accounts.c.created_at)
            .select_from(sessions.join(accounts, sessions.c.username == accounts.c.username))
            .where(sessions.c.token == token)
        )
        with storage_errors('session resolve'):
            row = await self.db.fetch_one(q)
        if row is None:
            return None
        if self.clock() >= _as_datetime(row['expires_at']):
            with storage_errors('session expire'):
                await self.db.execute(sessions.delete().where(sessions.c.token == token))
            logger.info('session_expired', account=row['username'])
            return None
        return Account(
            identifier=row['username'],
            role=Role(row['role']),
            created_at=_as_datetime(row['created_at']),
        )

    async def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        with storage_errors('session revoke'):
            await self.db.execute(sessions.delete().where(sessions.c.token == token))

    async def revoke_all(self, account_id: str) -> int:
        q = sessions.delete().where(sessions.c.username == account_id)
        with storage_errors('session revoke_all'):
            async with self.db.transaction():
                count = await self._count(sessions.c.username == account_id)
                await self.db.execute(q)
        return count

    async def purge_expired(self) -> int:
        cond = sessions.c.expires_at <= self.clock()
        with storage_errors('session purge'):
            async with self.db.transaction():
                count = await self._count(cond)
                if count:
                    await self.db.execute(sessions.delete().where(cond))
        return count

    async def _count(self, cond) -> int:
        return await self.db.fetch_val(select(func.count()).select_from(sessions).where(cond))


async def run_session_sweeper(manager: SessionManager, interval: float) -> None:
    """Periodically delete expired sessions until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            purged = await manager.purge_expired()
        except StorageError:
            logger.error('session_sweep_failed', exc_info=True)
            continue
        if purged:
            logger.info('sessions_purged', count=purged)
