"""
Alembic environment configuration.

The database URL and per-call timeout come from clubrides.config, the same
settings the application engine uses.
"""
from alembic import context

from clubrides.config import load_settings
from clubrides.database import build_engine
from clubrides.models.base import Base

# Import all models to ensure they are registered with Base.metadata
from clubrides.models.membership import ClubMembership  # noqa: F401
from clubrides.models.participation import Participation  # noqa: F401
from clubrides.models.ride import Ride  # noqa: F401

config = context.config

# Target metadata for autogenerate
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Generate SQL scripts without connecting to the database."""
    context.configure(
        url=load_settings().database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    settings = load_settings()
    connectable = build_engine(settings.database_url, settings.store_call_timeout_ms)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
