"""Account administration for local deployments.

    python manage.py create-account alice [--admin]
    python manage.py revoke-sessions alice
"""
import argparse
import asyncio
import getpass
from typing import Optional

import structlog

from accounts import CredentialStore
from config import Settings
from database import close_database, create_database, init_database
from errors import AccountExists
from logconfig import setup_logging
from models import Account, Role
from sessions import SessionManager

logger = structlog.get_logger()


async def create_account(settings: Settings, identifier: str, password: str,
                         role: Role = Role.STANDARD) -> Account:
    db = create_database(settings.database_url)
    await init_database(db)
    try:
        return await CredentialStore(db).create(identifier, password, role)
    finally:
        await close_database(db)


async def revoke_sessions(settings: Settings, identifier: str) -> int:
    """Sign an account out everywhere; returns the number of sessions removed."""
    db = create_database(settings.database_url)
    await init_database(db)
    try:
        count = await SessionManager(db).revoke_all(identifier)
    finally:
        await close_database(db)
    logger.info('sessions_revoked', account=identifier, count=count)
    return count


def main(argv: Optional[list] = None, settings: Optional[Settings] = None) -> int:
    parser = argparse.ArgumentParser(prog='manage.py')
    sub = parser.add_subparsers(dest='command', required=True)
    create = sub.add_parser('create-account')
    create.add_argument('identifier')
    create.add_argument('--admin', action='store_true')
    create.add_argument('--password')
    revoke = sub.add_parser('revoke-sessions')
    revoke.add_argument('identifier')
    args = parser.parse_args(argv)

    settings = settings or Settings.from_env()
    setup_logging(settings)
    if args.command == 'create-account':
        password = args.password or getpass.getpass('Password: ')
        role = Role.ADMINISTRATOR if args.admin else Role.STANDARD
        try:
            account = asyncio.run(create_account(settings, args.identifier, password, role))
        except AccountExists:
            print(f"Account {args.identifier!r} already exists")
            return 1
        print(f"Created {account.role.value} account {account.identifier!r}")
    else:
        count = asyncio.run(revoke_sessions(settings, args.identifier))
        print(f"Revoked {count} session(s) for {args.identifier!r}")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
