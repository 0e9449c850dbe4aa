import asyncio
import shutil
import subprocess
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient

from tubely.core.config import get_settings
from tubely.core.db import Base, create_engine
from tubely.main import create_app

from tests.fakes import FakeProbe, FakeTranscoder, RecordingObjectStore

TEST_SECRET = "test-secret"
TEST_ISSUER = "tubely-test"
TEST_AUDIENCE = "tubely"
TEST_BUCKET = "tubely-test-bucket"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Tubely environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture()
def staging_dir(tmp_path) -> Path:
    path = tmp_path / "staging"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "tubely_test.db"
    staging = tmp_path / "staging"
    staging.mkdir(exist_ok=True)

    monkeypatch.setenv("TUBELY_ENV", "test")
    monkeypatch.setenv("TUBELY_LOG_LEVEL", "debug")
    monkeypatch.setenv("TUBELY_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("TUBELY_STORAGE_BACKEND", "local")
    monkeypatch.setenv("TUBELY_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "assets"))
    monkeypatch.setenv("TUBELY_S3_BUCKET", TEST_BUCKET)
    monkeypatch.setenv("TUBELY_S3_REGION", "us-east-2")
    monkeypatch.setenv("TUBELY_TEMP_DIR", str(staging))
    monkeypatch.setenv("TUBELY_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("TUBELY_JWT_ISSUER", TEST_ISSUER)
    monkeypatch.setenv("TUBELY_JWT_AUDIENCE", TEST_AUDIENCE)

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture()
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture()
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture()
def object_store() -> RecordingObjectStore:
    return RecordingObjectStore()


@pytest.fixture()
def client(configure_environment, fake_probe, fake_transcoder, object_store):
    app = create_app()
    with TestClient(app) as client:
        app.state.media_probe = fake_probe
        app.state.transcoder = fake_transcoder
        app.state.object_store = object_store
        yield client


def build_token(user_id: str, *, scopes: list[str] | None = None) -> str:
    payload: dict[str, object] = {"sub": user_id, "iss": TEST_ISSUER, "aud": TEST_AUDIENCE}
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


@pytest.fixture()
def owner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-owner')}"}


@pytest.fixture()
def stranger_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-stranger')}"}


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-admin', scopes=['admin'])}"}


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """
    Generates a small 16:9 MP4 (moov atom at the end, ffmpeg's default) for tests.
    """
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("ffmpeg/ffprobe not installed")
    video_path = tmp_path_factory.mktemp("data") / "test_video.mp4"

    command = [
        "ffmpeg",
        "-f", "lavfi",
        "-i", "color=c=black:s=128x72:r=30",
        "-t", "1",
        "-pix_fmt", "yuv420p",
        str(video_path),
    ]
    subprocess.run(command, check=True, capture_output=True)
    return video_path
