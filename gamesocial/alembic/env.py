import asyncio
from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from gamesocial.models import Base, DATABASE_URL

config = context.config

# friendships, follows and blocks all hang off users
target_metadata = Base.metadata


def _url() -> str:
    # -x url=... wins over the environment
    return context.get_x_argument(as_dictionary=True).get('url') or DATABASE_URL


def run_migrations_offline():
    """Emit the relationship schema as SQL without touching a database"""
    context.configure(
        url=_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def apply_relationship_schema(connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    engine: AsyncEngine = create_async_engine(_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(apply_relationship_schema)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
