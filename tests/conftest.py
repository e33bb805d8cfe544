import pytest
import fakeredis
from httpx import AsyncClient, ASGITransport
from typing import AsyncGenerator

from src.main import app
from src.api.dependencies import get_redis, get_remover, get_trigger
from src.core.storage import LocalStorage, get_storage
from src.modules.companion.repositories import UploadRepository
from src.modules.companion.services import UploadIntakeService, UploadQueryService, UploadWorker
from tests.fakes import RecordingTrigger, fake_remover


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "storage"))


@pytest.fixture
def repository(redis_client) -> UploadRepository:
    return UploadRepository(redis_client, namespace="test")


@pytest.fixture
def trigger() -> RecordingTrigger:
    return RecordingTrigger()


@pytest.fixture
def intake(repository, storage, trigger) -> UploadIntakeService:
    return UploadIntakeService(repository=repository, storage=storage, trigger=trigger)


@pytest.fixture
def worker(repository, storage) -> UploadWorker:
    return UploadWorker(repository=repository, storage=storage, remover=fake_remover)


@pytest.fixture
def query(repository) -> UploadQueryService:
    return UploadQueryService(repository)


@pytest.fixture
async def client(redis_client, storage, trigger) -> AsyncGenerator[AsyncClient, None]:
    # Lifespan is not run: the app gets the fake job store directly
    app.state.redis = redis_client
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_remover] = lambda: fake_remover
    app.dependency_overrides[get_trigger] = lambda: trigger

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
