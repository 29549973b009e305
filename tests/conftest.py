import os
import sys
from typing import Generator
from unittest.mock import Mock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import create_app
from core.config import Settings
from core.context import build_context
from core.database import build_engine
from core.models import ChannelCreate, UserCreate, VideoCreate
from repository.memory import MemoryRepository
from repository.sql import SQLRepository


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory deployment."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        storage_backend="memory",
        session_secret="test-session-secret",
        max_upload_size_mb=5,
    )


@pytest.fixture
def context(settings):
    """Application context wired to the memory backend."""
    return build_context(settings)


@pytest.fixture
def app(context):
    """A fresh application per test."""
    return create_app(context=context)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def second_client(app) -> Generator[TestClient, None, None]:
    """Another browser against the same application, with its own cookie jar."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def memory_repository() -> MemoryRepository:
    return MemoryRepository()


@pytest_asyncio.fixture
async def sqlite_repository(tmp_path):
    """SQLRepository over a throwaway SQLite file."""
    repository = SQLRepository(build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await repository.initialize()
    yield repository
    await repository.close()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def repository(request, tmp_path):
    """Every Content Repository implementation, so each contract test runs on both."""
    if request.param == "memory":
        repository = MemoryRepository()
    else:
        repository = SQLRepository(
            build_engine(f"sqlite+aiosqlite:///{tmp_path / 'contract.db'}")
        )
    await repository.initialize()
    yield repository
    await repository.close()


@pytest.fixture
def make_user():
    """Create a user directly in a repository."""

    async def _make_user(repository, name: str = "alice"):
        return await repository.create_user(
            UserCreate(username=name, email=f"{name}@example.com", first_name=name.title())
        )

    return _make_user


@pytest.fixture
def make_channel():
    """Create a channel directly in a repository."""

    async def _make_channel(repository, user, handle: str = "gaminghub", name: str = "Gaming Hub"):
        return await repository.create_channel(
            ChannelCreate(name=name, username=handle, user_id=user.id)
        )

    return _make_channel


@pytest.fixture
def make_video():
    """Create a video directly in a repository."""

    async def _make_video(repository, channel, title: str = "Speedrun", **fields):
        values = {
            "thumbnail": "https://cdn.example.com/thumb.jpg",
            "video_url": "/api/videos/stream/videos%2F1-clip.mp4",
            "duration": "10:00",
            **fields,
        }
        return await repository.create_video(
            VideoCreate(title=title, channel_id=channel.id, **values)
        )

    return _make_video


def login(client: TestClient, email: str = "alice@example.com", **names) -> dict:
    """Log in through the email OTP flow and return the user payload."""
    response = client.post(
        "/api/auth/email/verify-otp", json={"email": email, "otp": "123456", **names}
    )
    assert response.status_code == 200, response.text
    return response.json()["user"]


@pytest.fixture
def login_as():
    """The email login helper, as a fixture."""
    return login


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock()
    logger.info = Mock()
    logger.error = Mock()
    logger.warning = Mock()
    logger.debug = Mock()
    return logger


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.delenv("REPLIT_DOMAINS", raising=False)
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.delenv("GOOGLE_CLIENT_SECRET", raising=False)
    for name in (
        "DATABASE_URL",
        "SESSION_SECRET",
        "S3_ENDPOINT",
        "S3_BUCKET",
        "CDN_URL",
        "MAX_UPLOAD_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
