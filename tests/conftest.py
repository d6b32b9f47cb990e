"""
Shared fixtures.

- In-memory SQLite with a fresh schema per test
- Isolated storage directory per test
- A fake HTML renderer so no browser is needed
- TestClient with the database and render pipeline overridden
"""

import io
import os
import tempfile
from datetime import datetime
from typing import Generator

os.environ.setdefault("INKFRAME_DATABASE_URL", "sqlite://")
os.environ.setdefault("INKFRAME_STORAGE_DIR", tempfile.mkdtemp(prefix="inkframe-test-"))
os.environ.setdefault("INKFRAME_IMAGE_GC_SWEEP_SEC", "0")

import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from inkframe.main import app
from inkframe.db import Base, get_db
from inkframe.api.display import get_render_pipeline
from inkframe.models.device import Device, new_device
from inkframe.models.playlist import Playlist, PlaylistItem
from inkframe.models.plugin import Plugin, new_plugin
from inkframe.services import scheduler, storage
from inkframe.services.html_renderer import HtmlRenderError
from inkframe.services.render import RenderPipeline

FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0)

engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeHtmlRenderer:
    """Records markup and returns a plain PNG of the requested size."""

    def __init__(self, fail: bool = False, error: Exception | None = None):
        self.fail = fail
        self.error = error
        self.calls: list[dict] = []

    def render(self, markup, width, height, scale_factor=1.0, timezone=None) -> bytes:
        self.calls.append(
            {"markup": markup, "width": width, "height": height, "scale_factor": scale_factor, "timezone": timezone}
        )
        if self.error is not None:
            raise self.error
        if self.fail:
            raise HtmlRenderError("browser crashed")
        size = (int(round(width * scale_factor)), int(round(height * scale_factor)))
        img = Image.new("RGB", size, "white")
        ImageDraw.Draw(img).rectangle((0, 0, size[0] // 2, size[1] // 2), fill="black")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()


@pytest.fixture(autouse=True)
def storage_dir(tmp_path, monkeypatch) -> str:
    monkeypatch.setattr(storage, "STORAGE_DIR", str(tmp_path))
    storage.ensure_storage()
    return str(tmp_path)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def html_renderer() -> FakeHtmlRenderer:
    return FakeHtmlRenderer()


@pytest.fixture
def pipeline(html_renderer: FakeHtmlRenderer) -> RenderPipeline:
    return RenderPipeline(html_renderer=html_renderer)


@pytest.fixture
def frozen_now(monkeypatch) -> datetime:
    monkeypatch.setattr(scheduler, "utcnow", lambda: FIXED_NOW)
    return FIXED_NOW


@pytest.fixture(scope="function")
def client(db: Session, pipeline: RenderPipeline) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_render_pipeline] = lambda: pipeline

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def device(db: Session) -> Device:
    item = new_device("aa:bb:cc:dd:ee:ff", name="Test Device", api_key="test-token")
    item.timezone = "UTC"
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@pytest.fixture
def make_plugin(db: Session):
    def _make(name: str = "Hello", markup: str = "<p>{{ greeting }}</p>", **fields) -> Plugin:
        fields.setdefault("data_payload", {"greeting": f"hello from {name}"})
        plugin = new_plugin(name, render_markup=markup, **fields)
        db.add(plugin)
        db.commit()
        db.refresh(plugin)
        return plugin

    return _make


@pytest.fixture
def make_playlist(db: Session):
    def _make(device: Device, plugins: list[Plugin] | None = None, **fields) -> Playlist:
        fields.setdefault("name", "Main")
        playlist = Playlist(device_id=device.id, **fields)
        db.add(playlist)
        db.commit()
        for index, plugin in enumerate(plugins or [], start=1):
            db.add(PlaylistItem(playlist_id=playlist.id, plugin_id=plugin.id, order=index))
        db.commit()
        db.refresh(playlist)
        return playlist

    return _make


@pytest.fixture
def device_headers(device: Device) -> dict:
    return {"id": device.mac_address, "access-token": device.api_key}
