"""Shared pytest fixtures for gig feed tests."""

import io
from typing import Callable

import httpx
import pytest
from PIL import Image

from servers.gigfeed.cache.event_cache import EventCache
from servers.gigfeed.cache.image_cache import ImageCache
from servers.gigfeed.models import Show
from servers.gigfeed.status import StatusBoard
from servers.gigfeed.storage.file_store import FileStore, FileTableStore


class FakeClock:
    """Settable clock returning epoch milliseconds."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_image_bytes(width: int = 600, height: int = 400, fmt: str = "JPEG") -> bytes:
    """Encode a solid-colour test image."""
    img = Image.new("RGB", (width, height), color=(200, 40, 90))
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def admin_store(tmp_path) -> FileStore:
    """Blob store for lock and status records."""
    return FileStore(tmp_path / "client")


@pytest.fixture
def feed_store(tmp_path) -> FileStore:
    """Blob store for the published feed and event caches."""
    return FileStore(tmp_path / "client" / "json")


@pytest.fixture
def image_store(tmp_path) -> FileStore:
    """Blob store for cached images."""
    return FileStore(tmp_path / "client" / "pix")


@pytest.fixture
def table_store(tmp_path) -> FileTableStore:
    """Local table store."""
    return FileTableStore(tmp_path / "client", "gigfeed")


@pytest.fixture
def event_cache(feed_store: FileStore) -> EventCache:
    """Event cache sharing the feed folder, as in the default layout."""
    return EventCache(feed_store)


@pytest.fixture
def status_board(admin_store: FileStore) -> StatusBoard:
    """Status board in the admin folder."""
    return StatusBoard(admin_store)


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A 600x400 JPEG."""
    return make_image_bytes()


@pytest.fixture
def image_requests() -> list[str]:
    """URLs requested through image_transport."""
    return []


@pytest.fixture
def image_transport(jpeg_bytes: bytes, image_requests: list[str]) -> httpx.MockTransport:
    """Serve jpeg_bytes for any URL and record each request."""

    def handler(request: httpx.Request) -> httpx.Response:
        image_requests.append(str(request.url))
        return httpx.Response(200, headers={"content-type": "image/jpeg"}, content=jpeg_bytes)

    return httpx.MockTransport(handler)


@pytest.fixture
def image_cache(image_store: FileStore, image_transport: httpx.MockTransport) -> ImageCache:
    """Image cache backed by a mock transport, with DNS checks off."""
    return ImageCache(image_store, resolve_dns=False, transport=image_transport)


@pytest.fixture
def make_show() -> Callable[..., Show]:
    """Factory for shows with sensible defaults."""

    def _make(title: str = "Reggae Night", **kwargs) -> Show:
        data = {
            "title": title,
            "venue": "The Camel",
            "date": "Fri 17 Jan 21:00",
            "dt": 1_737_147_600_000,
            "image": "https://images.example.com/reggae.jpg",
            "url": "https://example.com/reggae-night",
            "text": "Weekly reggae showcase with local bands",
        }
        data.update(kwargs)
        return Show.model_validate(data)

    return _make


@pytest.fixture
def sample_shows(make_show) -> list[Show]:
    """Five distinct shows from one source."""
    return [
        make_show(f"Show {i}", dt=1_737_147_600_000 + i * 3_600_000, image=f"https://images.example.com/{i}.jpg")
        for i in range(5)
    ]
