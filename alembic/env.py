from logging.config import fileConfig

from sqlalchemy import create_engine, pool, text

from alembic import context
from src.config.settings import DatabaseSettings
from src.constants import DB_SCHEMA
from src.session.database import database_url
from src.session.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Importing src.session.database registers the CRM and governance tables.
target_metadata = Base.metadata

# alembic runs synchronously, so migrations use psycopg rather than asyncpg.
DATABASE_URL = database_url(DatabaseSettings(), driver="psycopg")


def include_name(name, type_, parent_names):
    """Restrict autogenerate to the studio_agent schema."""
    if type_ == "schema":
        return name == DB_SCHEMA
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table_schema=DB_SCHEMA,
        include_schemas=True,
        include_name=include_name,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {DB_SCHEMA}"))
        connection.commit()

        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
