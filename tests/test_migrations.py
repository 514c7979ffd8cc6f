"""Schema migrations and the table bootstrap script."""

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, select

from config import Settings
from database import accounts, create_database, close_database
from migrate import create_tables

from conftest import ADMIN_PASSWORD, ADMIN_USERNAME

ALEMBIC_DIR = Path(__file__).resolve().parents[1] / "backend" / "alembic"
TABLES = {"accounts", "sessions", "watch_progress", "cache"}


def _alembic_config(url: str) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    cfg.attributes["database_url"] = url
    return cfg


class TestAlembic:
    def test_upgrade_and_downgrade(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'migrated.db'}"
        cfg = _alembic_config(url)
        command.upgrade(cfg, "head")
        engine = create_engine(url)
        try:
            inspector = inspect(engine)
            assert TABLES <= set(inspector.get_table_names())
            unique = inspector.get_unique_constraints("watch_progress")
            assert any(set(u["column_names"]) >= {"username", "media_type", "title_id", "season", "episode"}
                       for u in unique)

            command.downgrade(cfg, "base")
            assert not TABLES & set(inspect(engine).get_table_names())
        finally:
            engine.dispose()


class TestCreateTables:
    async def test_creates_and_seeds_once(self, tmp_path):
        settings = Settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'boot.db'}",
            seed_admin_username=ADMIN_USERNAME,
            seed_admin_password=ADMIN_PASSWORD,
        )
        assert await create_tables(settings) is True
        assert await create_tables(settings) is False

        db = create_database(settings.database_url)
        await db.connect()
        try:
            rows = await db.fetch_all(select(accounts.c.username))
        finally:
            await close_database(db)
        assert [r["username"] for r in rows] == [ADMIN_USERNAME]
