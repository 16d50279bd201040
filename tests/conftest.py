"""Shared pytest fixtures for Picvault tests."""

from __future__ import annotations

import asyncio
import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import httpx
import pytest

from picvault.api.gallery_store import (
    filter_gallery_entries,
    find_gallery_entry,
    paginate_gallery_entries,
)
from picvault.core.cache_store import QueryCache
from picvault.core.config import PicvaultConfig
from picvault.core.http import ApiClient
from picvault.core.models import ImageRecord


def image_dict(image_id: str, tags: list[str] | None = None, orientation: str = "landscape") -> dict:
    """Build a gallery entry dictionary as the API returns it."""
    return {
        "id": image_id,
        "filename": f"{image_id}.png",
        "url": f"/files/{image_id}.png",
        "tags": list(tags or []),
        "orientation": orientation,
        "uploadTime": "2026-01-01T00:00:00+00:00",
    }


def make_image(image_id: str, tags: list[str] | None = None, orientation: str = "landscape") -> ImageRecord:
    """Build an ImageRecord with the same shape as :func:`image_dict`."""
    return ImageRecord.model_validate(image_dict(image_id, tags, orientation))


class FakeImageApi:
    """In-memory stand-in for the image API, served through ``httpx.MockTransport``.

    Listing requests are filtered and paginated with the real gallery store
    helpers, so page arithmetic matches the server.

    Attributes:
        images: Gallery entries, newest first.
        requests: Every request received, in order.
        error_status: When set, every request answers with this status.
        reject_delete: When True, deletes answer ``success: false``.
        list_gate: When set, listing requests wait for this event.
        list_started: Set once a listing request has reached the handler.
    """

    def __init__(self, images: list[dict] | None = None) -> None:
        self.images = list(images or [])
        self.requests: list[httpx.Request] = []
        self.error_status: int | None = None
        self.reject_delete = False
        self.list_gate: asyncio.Event | None = None
        self.list_started = asyncio.Event()

    def count(self, method: str, path: str = "/api/images") -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error_status is not None:
            return httpx.Response(self.error_status, json={"detail": "Server exploded"})

        path = request.url.path
        if path == "/api/images" and request.method == "GET":
            self.list_started.set()
            if self.list_gate is not None:
                await self.list_gate.wait()
            params = request.url.params
            entries = filter_gallery_entries(
                self.images, tag=params.get("tag"), orientation=params.get("orientation")
            )
            page = paginate_gallery_entries(
                entries, int(params.get("page", "1")), int(params.get("limit", "24"))
            )
            return httpx.Response(200, json={"success": True, **page})

        image_id = path.rsplit("/", 1)[-1]
        entry = find_gallery_entry(self.images, image_id)
        if entry is None:
            return httpx.Response(404, json={"detail": "Image not found"})

        if request.method == "GET":
            return httpx.Response(200, json={"success": True, "image": entry})

        if request.method == "DELETE":
            if self.reject_delete:
                return httpx.Response(200, json={"success": False, "message": "Delete refused"})
            self.images = [e for e in self.images if e["id"] != image_id]
            return httpx.Response(200, json={"success": True, "message": "Image deleted"})

        if request.method == "PUT":
            body = json.loads(request.content or b"{}")
            if "tags" in body:
                entry["tags"] = body["tags"]
            return httpx.Response(200, json={"success": True, "image": entry})

        return httpx.Response(405, json={"detail": "Method not allowed"})


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def store() -> QueryCache:
    """Empty query cache."""
    return QueryCache()


@pytest.fixture
def fake_api() -> FakeImageApi:
    """Fake API holding five untagged landscape images, img0 newest."""
    return FakeImageApi([image_dict(f"img{i}") for i in range(5)])


@pytest.fixture
def api_client(fake_api: FakeImageApi) -> ApiClient:
    """ApiClient whose requests are answered by ``fake_api``."""
    transport = httpx.MockTransport(fake_api)
    return ApiClient(client=httpx.AsyncClient(transport=transport, base_url="http://test"))


@pytest.fixture(name="make_image")
def make_image_fixture():
    """Factory for ImageRecord test values."""
    return make_image


@pytest.fixture(name="image_dict")
def image_dict_fixture():
    """Factory for gallery entry dictionaries."""
    return image_dict


@pytest.fixture
def test_config(temp_dir: Path) -> PicvaultConfig:
    """PicvaultConfig with every directory inside ``temp_dir`` and no .env file."""
    return PicvaultConfig(
        data_dir=str(temp_dir / "data"),
        gallery_dir=str(temp_dir / "data" / "gallery"),
        static_dir=str(temp_dir / "static"),
        _env_file=None,
    )
