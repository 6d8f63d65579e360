import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-cisa")
os.environ.setdefault("PUBLIC_BASE_URL", "https://cisa.test")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("GEMINI_API_KEY", "")

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cisa.core.constants import Role
from cisa.core.ratelimit import limiter
from cisa.core.security import AuthorizationContext
from cisa.db.base import Base
from cisa.models.domain import User

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def _reset_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest_asyncio.fixture
async def session_maker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def admin(db) -> AuthorizationContext:
    db.add(User(id="admin-1", email="admin@school.test", role=Role.ADMIN))
    await db.commit()
    return AuthorizationContext(uid="admin-1", role=Role.ADMIN, email="admin@school.test")


@pytest_asyncio.fixture
async def student(db) -> AuthorizationContext:
    db.add(
        User(
            id="stu-1",
            email="somchai@school.test",
            role=Role.STUDENT,
            student_id="67001",
            first_name="Somchai",
            last_name="Dee",
            class_room="M.4/2",
        )
    )
    await db.commit()
    return AuthorizationContext(uid="stu-1", role=Role.STUDENT, email="somchai@school.test")
