import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./plantalerts-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("POLLER_ENABLED", "false")
os.environ.setdefault("CREATE_TABLES", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from plantalerts.core.database import Base, get_db  # noqa: E402
from plantalerts.core.security import create_access_token  # noqa: E402
from plantalerts.main import app  # noqa: E402
from plantalerts.models.notification import Notification  # noqa: E402
from plantalerts.schemas.notification import NotificationItem  # noqa: E402

TEST_DB_URL = os.getenv("TEST_DATABASE_URL")

OPERATOR = "op-1"
OTHER_OPERATOR = "op-2"
BASE_TIME = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(TEST_DB_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def _override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(operator_id: str = OPERATOR) -> dict:
    token = create_access_token(operator_id)
    return {"Authorization": f"Bearer {token}"}


async def seed_notifications(db: AsyncSession, count: int, operator_id: str = OPERATOR, read: bool = False) -> list[Notification]:
    """Inserts ``count`` notifications, oldest first."""
    rows = []
    for i in range(count):
        n = Notification(
            operator_id=operator_id,
            device="Machine1",
            metric="Temperature",
            severity="warning",
            text=f'{{"device": "Machine1", "metric": "Temperature", "value": {81 + i}}}',
            read=read,
            created_at=BASE_TIME + timedelta(minutes=i),
        )
        db.add(n)
        rows.append(n)
    await db.commit()
    for n in rows:
        await db.refresh(n)
    return rows


def make_item(notification_id: int, operator_id: str = OPERATOR, read: bool = False, text: str = "{}") -> NotificationItem:
    return NotificationItem(
        id=notification_id,
        operator_id=operator_id,
        device="Machine1",
        metric="Temperature",
        severity="warning",
        text=text,
        read=read,
        created_at=BASE_TIME + timedelta(minutes=notification_id),
    )
