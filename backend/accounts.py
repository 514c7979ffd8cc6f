from datetime import datetime
from typing import Optional

import structlog
from databases import Database
from passlib.context import CryptContext
from sqlalchemy import func, select

from database import accounts, dialect_insert, storage_errors, utcnow
from errors import AccountExists, AccountNotFound, BadCredential
from models import Account, Role

logger = structlog.get_logger()

pwd_context = CryptContext(schemes=['bcrypt'], deprecated='auto')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _to_account(row) -> Account:
    created = row['created_at']
    if isinstance(created, str):
        created = datetime.fromisoformat(created)
    return Account(identifier=row['username'], role=Role(row['role']), created_at=created)


class CredentialStore:
    """Account records and password verification."""

    def __init__(self, db: Database):
        self.db = db

    async def _fetch(self, identifier: str):
        q = accounts.select().where(accounts.c.username == identifier)
        with storage_errors('account lookup'):
            return await self.db.fetch_one(q)

    async def get(self, identifier: str) -> Optional[Account]:
        row = await self._fetch(identifier)
        return _to_account(row) if row else None

    async def verify(self, identifier: str, plaintext_password: str) -> Account:
        """Return the account for a matching identifier/password pair.

        Raises AccountNotFound or BadCredential. Both paths run one bcrypt
        verification so response time does not reveal which usernames exist.
        """
        row = await self._fetch(identifier)
        if row is None:
            pwd_context.dummy_verify()
            raise AccountNotFound(identifier)
        if not verify_password(plaintext_password, row['password_hash']):
            raise BadCredential(identifier)
        return _to_account(row)

    async def create(self, identifier: str, password: str, role: Role = Role.STANDARD) -> Account:
        if not identifier or not identifier.strip():
            raise ValueError('identifier must not be empty')
        now = utcnow()
        stmt = dialect_insert(self.db, accounts).values(
            username=identifier,
            password_hash=get_password_hash(password),
            role=role.value,
            created_at=now,
        ).on_conflict_do_nothing(index_elements=[accounts.c.username])
        with storage_errors('account create'):
            async with self.db.transaction():
                existing = await self._fetch(identifier)
                if existing is not None:
                    raise AccountExists(identifier)
                await self.db.execute(stmt)
        logger.info('account_created', account=identifier, role=role.value)
        return Account(identifier=identifier, role=role, created_at=now)

    async def ensure_seed_account(self, identifier: str = 'admin', password: str = 'admin123') -> bool:
        """Create the default administrator if no account exists yet.

        Safe to call on every start; returns True only when a row was inserted.
        """
        with storage_errors('account count'):
            count = await self.db.fetch_val(select(func.count()).select_from(accounts))
        if count:
            return False
        stmt = dialect_insert(self.db, accounts).values(
            username=identifier,
            password_hash=get_password_hash(password),
            role=Role.ADMINISTRATOR.value,
            created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=[accounts.c.username])
        with storage_errors('account seed'):
            await self.db.execute(stmt)
        logger.warning('default_admin_created', account=identifier,
                       hint='change SEED_ADMIN_PASSWORD for any shared deployment')
        return True
