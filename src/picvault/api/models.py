"""Pydantic request models for the Picvault API.

FastAPI uses these for request validation and OpenAPI documentation.
Uploads are multipart and are validated field by field in the route itself.

Models
------
UpdateImageRequest
    Payload for ``PUT /api/images/{id}`` — replaces an image's tags and/or
    resets its expiry.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalise_tags(tags: list[str]) -> list[str]:
    """Strip whitespace, drop empty tags, and de-duplicate preserving order."""
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


class UpdateImageRequest(BaseModel):
    """Request body for the ``PUT /api/images/{id}`` endpoint.

    Attributes:
        tags: New tag list.  ``None`` leaves tags unchanged.
        expiry_minutes: Minutes from now until the image expires.  ``0``
            clears the expiry; ``None`` leaves it unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    tags: list[str] | None = Field(
        default=None,
        description="Replacement tag list; omit to keep the current tags.",
    )
    expiry_minutes: int | None = Field(
        default=None,
        alias="expiryMinutes",
        ge=0,
        description="Minutes until expiry; 0 removes the expiry, omit to keep it.",
    )

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, tags: list[str] | None) -> list[str] | None:
        return None if tags is None else normalise_tags(tags)
