# tests/conftest.py
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fakeredis import aioredis as fake_aioredis
import httpx
from jose import jwt
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.dependencies.auth import ALGORITHM, SECRET_KEY
from social_publisher.dependencies.db import get_session_dep, get_session_factory
from social_publisher.dependencies.rate_limit import get_rate_limiter
from social_publisher.dependencies.storage import get_storage_provider
from social_publisher.errors import StorageError
from social_publisher.infrastructure.database import init_db
from social_publisher.infrastructure.security import encrypt_token
from social_publisher.main import app
from social_publisher.models.connected_platform import ConnectedPlatform
from social_publisher.services.quota import RateLimiter


def create_access_token(account_id: str, plan: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Mints a token with the claims the account service issues."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    payload = {"sub": account_id, "exp": int(expire.timestamp()), "jti": str(uuid.uuid4()), "type": "access"}
    if plan:
        payload["plan"] = plan
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


class InMemoryStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_deletes = False

    async def generate_upload_url(self, key: str, content_type: str, expires: timedelta) -> str:
        return f"https://upload.test/{key}?expires={int(expires.total_seconds())}"

    def public_url(self, key: str) -> str:
        return f"https://cdn.test/{key}"

    async def download(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageError(f"object {key} not found")
        return self.objects[key]

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data

    async def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise StorageError("bucket unavailable")
        self.objects.pop(key, None)
        self.deleted.append(key)


class ScriptedClient:
    """Platform client double: per-platform queue of ids or exceptions, then generated ids."""

    def __init__(self, script: Optional[Dict[str, list]] = None):
        self.script = script or {}
        self.calls = []
        self._ids = itertools.count(1)

    async def publish(self, connection, unit, reply_to):
        self.calls.append({"platform": connection.platform, "position": unit.position, "text": unit.text, "reply_to": reply_to})
        queue = self.script.get(connection.platform)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"{connection.platform}-{next(self._ids)}"

    def calls_for(self, platform: str) -> list:
        return [c for c in self.calls if c["platform"] == platform]


@pytest.fixture
async def engine(tmp_path):
    # one file per test and no pooling, so concurrent sessions are separate sqlite connections
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def platform_client():
    return ScriptedClient()


@pytest.fixture
def connect(session_factory):
    async def _connect(account_id: str, platform: str) -> ConnectedPlatform:
        async with session_factory() as s:
            cp = ConnectedPlatform(
                account_id=account_id,
                platform=platform,
                provider_user_id=f"{platform}-user",
                access_token_enc=encrypt_token(f"{platform}-token"),
            )
            s.add(cp)
            await s.commit()
            await s.refresh(cp)
            return cp

    return _connect


@pytest.fixture
def auth_headers():
    def _headers(account_id: str, plan: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(account_id, plan=plan)}"}

    return _headers


@pytest.fixture
async def client(session_factory, redis, storage):
    async def override_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session_dep] = override_session
    app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(redis, limit=1000, window_seconds=60)
    app.dependency_overrides[get_storage_provider] = lambda: (lambda: storage)
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
