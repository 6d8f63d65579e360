from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from cisa.core.config import get_settings

settings = get_settings()
db_url = make_url(settings.async_database_url)
engine_kwargs: dict = {"future": True}

if db_url.get_backend_name() == "postgresql":
    engine_kwargs["pool_pre_ping"] = True
    engine_kwargs["connect_args"] = {"statement_cache_size": 0}
    # Transaction-mode poolers (pgbouncer on 6543) cannot hold pooled sessions.
    if db_url.port == 6543:
        engine_kwargs["poolclass"] = NullPool
elif db_url.get_backend_name() == "sqlite" and db_url.database in (None, "", ":memory:"):
    # one shared connection so every session sees the same in-memory database
    engine_kwargs["poolclass"] = StaticPool
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_async_engine(db_url.render_as_string(hide_password=False), **engine_kwargs)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
