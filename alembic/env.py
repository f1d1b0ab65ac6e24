import logging
from logging.config import fileConfig
import sys
from pathlib import Path

from alembic import context

# Add the project root to the path before importing project modules
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))


# Import project modules after path modification
def _get_settings():
    from config import get_settings

    return get_settings()


def _get_base():
    from database import Base
    import models  # noqa: F401  registers the tables on Base.metadata

    return Base


# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# an open connection may be handed over; the caller owns logging then
external_connection = config.attributes.get("connection")

if config.config_file_name is not None and external_connection is None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

if external_connection is None:
    settings = _get_settings()
    config.set_main_option("sqlalchemy.url", settings.database_url)
    logger.info(f"migrating: dialect={settings.database_url.split(':', 1)[0]}")

target_metadata = _get_base().metadata


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_on(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    if external_connection is not None:
        _run_on(external_connection)
        return

    from database import build_engine

    connectable = build_engine(config.get_main_option("sqlalchemy.url"))
    with connectable.connect() as connection:
        _run_on(connection)
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
