from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import event
from sqlalchemy.pool import NullPool

import os
import logging

from . import config
from .models import Tag

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./practice_calendar.db")

# Use NullPool to avoid connection-pool objects being bound to a specific
# event loop (which can cause 'bound to a different event loop' errors
# when tests run each case on a fresh loop).
engine = create_async_engine(DATABASE_URL, echo=config.SQL_ECHO, future=True, poolclass=NullPool)


if DATABASE_URL.startswith('sqlite'):
    # The sqlite3 driver issues its own BEGIN lazily and breaks SAVEPOINT
    # handling. Take over transaction control so begin_nested() works; the
    # series materializer depends on it.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def seed_default_tags(sess: AsyncSession) -> None:
    """Create the well-known appointment tags that are missing."""
    res = await sess.exec(select(Tag.name))
    existing = set(res.all())
    for name, color in config.DEFAULT_TAG_COLORS.items():
        if name not in existing:
            sess.add(Tag(name=name, color=color))
            logger.info('seeded tag %r', name)


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    async with async_session() as sess:
        await seed_default_tags(sess)
        await sess.commit()


async def reset_db():
    """Drop and recreate every table. Used by the test suite."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await init_db()
