"""Create the tables and seed the default administrator for the configured DATABASE_URL."""
import asyncio

from accounts import CredentialStore
from config import Settings
from database import close_database, create_database, init_database
from logconfig import setup_logging


async def create_tables(settings: Settings) -> bool:
    db = create_database(settings.database_url)
    await init_database(db)
    try:
        return await CredentialStore(db).ensure_seed_account(
            settings.seed_admin_username, settings.seed_admin_password)
    finally:
        await close_database(db)


if __name__ == "__main__":
    settings = Settings.from_env()
    setup_logging(settings)
    seeded = asyncio.run(create_tables(settings))
    print("Tables created successfully!" + (" Default admin seeded." if seeded else ""))
