"""Alembic environment configuration for lorevault-storage migrations."""

from alembic import context

from lorevault_storage.config import DatabaseConfig

config = context.config


def _database_url() -> str:
    # Tests and tooling pass an explicit URL; otherwise use LOREVAULT_DB_* settings.
    return config.get_main_option("sqlalchemy.url") or DatabaseConfig().sqlalchemy_url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without connecting)."""
    context.configure(url=_database_url(), target_metadata=None, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (connect to the database)."""
    from sqlalchemy import create_engine

    connectable = create_engine(_database_url())
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
