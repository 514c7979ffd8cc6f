from logging.config import fileConfig
import os, sys
from sqlalchemy import create_engine, pool
from alembic import context
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from config import Settings
from database import metadata, sync_url

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# callers may pass the url programmatically; otherwise use the app's DATABASE_URL
db_url = sync_url(config.attributes.get('database_url') or Settings.from_env().database_url)


def run_migrations_offline():
    context.configure(url=db_url, target_metadata=metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    engine = create_engine(db_url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        # batch mode lets SQLite ALTER tables by copy
        context.configure(connection=connection, target_metadata=metadata, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
