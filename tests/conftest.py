import io
import os
import tempfile

# Settings are read at import time; point everything at throwaway locations first
_TMP = tempfile.mkdtemp(prefix="imprint-tests-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOCAL_STORAGE_PATH"] = os.path.join(_TMP, "storage")
os.environ["STAGING_PATH"] = os.path.join(_TMP, "staging")
os.environ["LOG_FORMAT_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from imprint.core.database import build_engine, create_db_and_tables, engine, get_session
from imprint.core.exceptions import circuit_breakers
from imprint.core.storage import LocalStorage, StorageFactory, get_storage
from imprint.modules.templates.schemas import TemplateRead


def make_image(width, height, color=(200, 80, 40), mode="RGB", fmt="JPEG", **save_kwargs) -> bytes:
    """Solid-color image encoded to bytes."""
    if mode == "RGBA" and len(color) == 3:
        color = color + (255,)
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_template(**overrides) -> TemplateRead:
    data = {"id": "tpl-test", "name": "Test Template", "width": 100, "height": 100}
    data.update(overrides)
    return TemplateRead(**data)


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    for breaker in circuit_breakers.values():
        breaker.reset()
    StorageFactory.reset()
    yield


@pytest.fixture
def jpeg_1080p() -> bytes:
    return make_image(1920, 1080)


@pytest.fixture
def jpeg_800x600() -> bytes:
    return make_image(800, 600)


@pytest.fixture
def png_500() -> bytes:
    return make_image(500, 500, fmt="PNG")


@pytest.fixture
async def db_engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as s:
        yield s


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "storage"))


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
async def client(session_maker, storage) -> AsyncGenerator[AsyncClient, None]:
    from imprint.main import app

    async def override_session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_storage] = lambda: storage

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def template_factory():
    return make_template
