import os
import tempfile

# must be set before practice.config is imported
os.environ["ASYNC_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["CRON_SECRET"] = ""
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASS"] = ""
os.environ["CALENDLY_WEBHOOK_SIGNING_KEY"] = ""
os.environ["AUDIO_STORAGE_DIR"] = tempfile.mkdtemp(prefix="practice-audio-")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from practice.api.routers.recordings import get_audio_bucket
from practice.db import Base, get_db
from practice.main import app
from practice.models import User
from practice.services.auth_service import create_access_token, hash_password
from practice.services.storage import LocalBucket


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def user(db):
    u = User(email="therapist@example.com", password_hash=hash_password("password123"), name="Dr. Test")
    db.add(u)
    await db.commit()
    return u


@pytest.fixture
def bucket(tmp_path):
    root = tmp_path / "audio"
    root.mkdir()
    return LocalBucket(str(root))


@pytest.fixture
async def client(session_factory, user, bucket):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audio_bucket] = lambda: bucket
    token = create_access_token({"sub": str(user.id), "role": user.role})
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as c:
        yield c
    app.dependency_overrides.clear()
