import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.api.deps import get_task_queue, get_upload_storage
from src.database import get_db
from src.main import app
from src.models import Base
from src.schemas.job import StoredFile
from src.services.uploads import LocalUploadStorage
from src.worker.handlers import BrandJobHandler
from src.worker.queue import TaskQueue
from tests._client import get_async_client
from tests._fakes import FakeClock, FakeImageStore
from tests._helpers import PNG_BYTES


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database per test, schema from ORM metadata."""

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def image_store() -> FakeImageStore:
    return FakeImageStore()


@pytest.fixture
def queue(session_factory, image_store, clock) -> TaskQueue:
    handler = BrandJobHandler(session_factory, image_store, folder="brands")
    return TaskQueue(session_factory, name="brands", handler=handler, clock=clock)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
async def client(session_factory, queue, upload_dir):
    async def _get_db():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_task_queue] = lambda: queue
    app.dependency_overrides[get_upload_storage] = lambda: LocalUploadStorage(str(upload_dir))
    try:
        async with get_async_client() as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def stored_file(tmp_path) -> StoredFile:
    """An upload already written to disk, as the API would leave it."""

    path = tmp_path / "pending-icon.png"
    path.write_bytes(PNG_BYTES)
    return StoredFile(path=str(path), filename=path.name, content_type="image/png")

