"""Picvault — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`picvault.core.config.config`
  (``PICVAULT_*`` environment variables).
- **Gallery persistence** uses a single ``gallery.json`` file managed by
  :mod:`picvault.api.gallery_store` — no database required.
- **Uploads** are run through :class:`~picvault.api.compression.CompressionService`,
  which stores resized WebP/AVIF variants next to the original.
- **Stored images** are served at ``/files`` and static assets at
  ``/static`` by FastAPI's ``StaticFiles``.

Every JSON response carries a ``success`` flag, which the client-side
listing cache checks in addition to the HTTP status.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/images``               Paginated listing (tag/orientation)
GET       ``/api/images/{id}``          Single image record
PUT       ``/api/images/{id}``          Update tags and/or expiry
DELETE    ``/api/images/{id}``          Delete image files and record
POST      ``/api/upload``               Upload and compress an image
GET       ``/api/tags``                 Distinct tags in use
GET       ``/favicon.ico``              Redirect to the static favicon
GET       ``/favicon.svg``              Redirect to the static SVG favicon
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    picvault

Direct invocation::

    python -m picvault.api.main
"""

from __future__ import annotations

import io
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from PIL import Image, UnidentifiedImageError

from picvault import __version__
from picvault.api.compression import CompressionService, parse_compression_options
from picvault.api.gallery_store import (
    collect_tags,
    delete_entry_files,
    filter_gallery_entries,
    find_gallery_entry,
    load_gallery_entries,
    orientation_for,
    paginate_gallery_entries,
    save_gallery_entries,
    utcnow,
)
from picvault.api.models import UpdateImageRequest, normalise_tags
from picvault.core.config import config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve paths from the global configuration instance.
# ---------------------------------------------------------------------------
STATIC_DIR: Path = config.static_dir
DATA_DIR: Path = config.data_dir
GALLERY_DIR: Path = config.gallery_dir
GALLERY_DB: Path = DATA_DIR / "gallery.json"

# File extensions used when storing originals, keyed by Pillow format name.
_EXTENSIONS = {"jpeg": "jpg", "tiff": "tif"}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the compression service on startup."""
    app.state.compression = CompressionService()
    logger.info(f"Picvault {__version__} started; gallery at {GALLERY_DIR}")

    yield

    logger.info("Picvault shutting down.")


app = FastAPI(
    title="Picvault",
    description="Image hosting API with a paginated, filterable gallery.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
app.mount("/files", StaticFiles(directory=str(GALLERY_DIR)), name="files")


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _load_entries() -> list[dict]:
    return load_gallery_entries(GALLERY_DB, GALLERY_DIR)


def _get_entry_or_404(entries: list[dict], image_id: str) -> dict:
    entry = find_gallery_entry(entries, image_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return entry


def _expiry_time(minutes: int | None) -> str | None:
    if not minutes:
        return None
    return (utcnow() + timedelta(minutes=minutes)).isoformat()


def _detect_format(data: bytes) -> tuple[str, int, int]:
    """Return the Pillow format name (lowercase) and dimensions of *data*.

    Raises:
        HTTPException: 400 if the bytes are not a readable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return (image.format or "").lower(), image.width, image.height
    except (UnidentifiedImageError, OSError) as e:
        raise HTTPException(status_code=400, detail=f"Unsupported image: {e}") from e


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/images")
async def list_images(
    page: int = 1,
    limit: int = config.page_size,
    tag: str | None = None,
    orientation: str | None = None,
) -> dict:
    """Return one page of the gallery, newest first.

    Args:
        page: Page number (1-indexed, clamped to the valid range).
        limit: Images per page.
        tag: Only return images carrying this tag.
        orientation: Only return images with this orientation.

    Returns:
        Dictionary with ``success``, ``images``, ``page``, ``limit``,
        ``total`` and ``totalPages``.
    """
    entries = filter_gallery_entries(_load_entries(), tag=tag, orientation=orientation)
    return {"success": True, **paginate_gallery_entries(entries, page, limit)}


@app.get("/api/images/{image_id}")
async def get_image(image_id: str) -> dict:
    """Return a single image record.

    Raises:
        HTTPException: 404 if the image is not found.
    """
    entry = _get_entry_or_404(_load_entries(), image_id)
    return {"success": True, "image": entry}


@app.put("/api/images/{image_id}")
async def update_image(image_id: str, req: UpdateImageRequest) -> dict:
    """Replace an image's tags and/or reset its expiry.

    Raises:
        HTTPException: 404 if the image is not found.
    """
    entries = _load_entries()
    entry = _get_entry_or_404(entries, image_id)

    if req.tags is not None:
        entry["tags"] = req.tags
    if req.expiry_minutes is not None:
        entry["expiryTime"] = _expiry_time(req.expiry_minutes)

    save_gallery_entries(GALLERY_DB, entries)
    logger.info(f"Updated image {image_id}")
    return {"success": True, "image": entry}


@app.delete("/api/images/{image_id}")
async def delete_image(image_id: str) -> dict:
    """Delete an image's files and its gallery record.

    Raises:
        HTTPException: 404 if the image is not found.
    """
    entries = _load_entries()
    entry = _get_entry_or_404(entries, image_id)

    delete_entry_files(entry, GALLERY_DIR)
    save_gallery_entries(GALLERY_DB, [e for e in entries if e["id"] != image_id])

    logger.info(f"Deleted image {image_id}")
    return {"success": True, "message": "Image deleted"}


@app.post("/api/upload")
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    tags: str | None = Form(default=None),
    expiryMinutes: int | None = Form(default=None, ge=0),
    quality: str | None = Form(default=None),
    maxWidth: str | None = Form(default=None),
    maxHeight: str | None = Form(default=None),
    preserveAnimation: str | None = Form(default=None),
    generateWebp: str | None = Form(default=None),
    generateAvif: str | None = Form(default=None),
) -> dict:
    """Store an uploaded image together with its compressed variants.

    The compression fields follow :func:`parse_compression_options`;
    ``tags`` is a comma-separated list.

    Returns:
        Dictionary with ``success`` and the new ``image`` record.

    Raises:
        HTTPException: 400 if the upload is empty or not a readable image.
    """
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    fmt, width, height = _detect_format(data)
    options = parse_compression_options(
        {
            "quality": quality,
            "maxWidth": maxWidth,
            "maxHeight": maxHeight,
            "preserveAnimation": preserveAnimation,
            "generateWebp": generateWebp,
            "generateAvif": generateAvif,
        }
    )

    compression: CompressionService = request.app.state.compression
    result = await compression.compress(data, fmt, options)

    image_id = uuid.uuid4().hex
    filename = f"{image_id}.{_EXTENSIONS.get(fmt, fmt or 'bin')}"
    (GALLERY_DIR / filename).write_bytes(result.original)

    entry = {
        "id": image_id,
        "filename": filename,
        "url": f"/files/{filename}",
        "originalName": file.filename,
        "format": fmt,
        "contentType": file.content_type,
        "width": width,
        "height": height,
        "size": len(result.original),
        "orientation": orientation_for(width, height),
        "tags": normalise_tags((tags or "").split(",")),
        "isAnimated": result.is_animated,
        "uploadTime": utcnow().isoformat(),
        "expiryTime": _expiry_time(expiryMinutes),
    }

    for variant_name, variant in (("webp", result.webp), ("avif", result.avif)):
        if variant is None:
            continue
        # Variant names must never collide with the original's, whatever its format.
        variant_filename = f"{image_id}.compressed.{variant_name}"
        (GALLERY_DIR / variant_filename).write_bytes(variant.data)
        entry[f"{variant_name}Filename"] = variant_filename
        entry[f"{variant_name}Url"] = f"/files/{variant_filename}"
        entry[f"{variant_name}Size"] = variant.size

    entries = _load_entries()
    entries.insert(0, entry)
    save_gallery_entries(GALLERY_DB, entries)

    logger.info(
        f"Stored upload {image_id} ({fmt}, {width}x{height}, "
        f"webp={'yes' if result.webp else 'no'}, avif={'yes' if result.avif else 'no'})"
    )
    return {"success": True, "image": entry}


@app.get("/api/tags")
async def list_tags() -> dict:
    """Return the distinct tags used across the gallery, sorted."""
    return {"success": True, "tags": collect_tags(_load_entries())}


@app.get("/favicon.ico", include_in_schema=False)
@app.get("/favicon.svg", include_in_schema=False)
async def favicon(request: Request) -> RedirectResponse:
    """Redirect favicon requests into ``/static``."""
    if request.url.path.lower().endswith(".svg"):
        return RedirectResponse("/static/favicon.svg")
    return RedirectResponse("/static/favicon.ico")


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~picvault.core.config.config` (which
    loads from ``PICVAULT_SERVER_HOST`` and ``PICVAULT_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:8787``.
    """
    import uvicorn

    uvicorn.run(
        "picvault.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
