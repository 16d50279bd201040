"""Image compression for uploads: resized WebP and AVIF variants.

:class:`CompressionService` takes the raw bytes of an upload and produces up
to two derived variants next to the untouched original:

- **WebP**, bounded by ``max_width`` × ``max_height``;
- **AVIF**, bounded additionally by ``avif_max_dimension`` (1600 by default)
  on each axis, since AVIF encode time grows quickly with pixel count.

Both encodes run concurrently.  Each is independent: a failure in one is
logged and leaves that variant absent without affecting the other or the
upload as a whole.

Animated GIFs are detected with a cheap marker scan and, when
``preserve_animation`` is set, returned as-is; Pillow's encoders here would
keep only the first frame.

Decoding and encoding go through two small collaborators,
:class:`PillowDecoder` and :class:`PillowTransformer`.  The service only
depends on their method signatures, so tests substitute fakes.

Option parsing
--------------
:func:`parse_compression_options` reads the multipart form fields
``quality``, ``maxWidth``, ``maxHeight``, ``preserveAnimation``,
``generateWebp`` and ``generateAvif``.  Missing or non-numeric numbers fall
back to their defaults, and only the leading integer of a value is read
(``"12.5"`` gives 12); a boolean field is false only for the literal string
``"false"``.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from PIL import Image

from picvault.core.config import config

logger = logging.getLogger(__name__)

# GIF block markers: Graphic Control Extension (0x21 0xF9) and Image Descriptor (0x2C).
_GRAPHIC_CONTROL = b"\x21\xf9"
_IMAGE_DESCRIPTOR = b"\x2c"

SCALE_DOWN = "scale-down"

# Leading optional sign and digits; trailing text is ignored ("12.5" -> 12, "12px" -> 12).
_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


@dataclass(frozen=True)
class CompressionOptions:
    """Per-upload compression settings; defaults come from ``config``."""

    quality: int = field(default_factory=lambda: config.compression_quality)
    max_width: int = field(default_factory=lambda: config.compression_max_width)
    max_height: int = field(default_factory=lambda: config.compression_max_height)
    preserve_animation: bool = True
    generate_webp: bool = True
    generate_avif: bool = True


@dataclass(frozen=True)
class CompressedImage:
    """One encoded variant."""

    data: bytes
    content_type: str
    size: int


@dataclass(frozen=True)
class CompressionResult:
    """Outcome of :meth:`CompressionService.compress`.

    ``webp`` and ``avif`` are ``None`` when the variant was not requested or
    its encode failed.
    """

    original: bytes
    is_animated: bool = False
    webp: CompressedImage | None = None
    avif: CompressedImage | None = None


def parse_compression_options(form: Mapping[str, str | None]) -> CompressionOptions:
    """Build options from multipart form fields.

    Args:
        form: Field name → string value (absent fields may be missing or
            ``None``).

    Returns:
        Options with defaults filled in for anything missing or invalid.
    """
    defaults = CompressionOptions()

    def parse_number(name: str, default: int) -> int:
        value = form.get(name)
        if not value:
            return default
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else default

    def parse_flag(name: str, default: bool) -> bool:
        value = form.get(name)
        if value is None:
            return default
        return value != "false"

    return CompressionOptions(
        quality=parse_number("quality", defaults.quality),
        max_width=parse_number("maxWidth", defaults.max_width),
        max_height=parse_number("maxHeight", defaults.max_height),
        preserve_animation=form.get("preserveAnimation") != "false",
        generate_webp=parse_flag("generateWebp", defaults.generate_webp),
        generate_avif=parse_flag("generateAvif", defaults.generate_avif),
    )


def is_animated_gif(data: bytes) -> bool:
    """Guess whether GIF bytes hold more than one frame.

    Counts Graphic Control Extension pairs and Image Descriptor bytes and
    reports animation once more than one is found.  This is a heuristic, not
    a parser: short or malformed input simply reports ``False``.
    """
    if len(data) < 2:
        return False
    # The final byte is never counted as a descriptor on its own.
    markers = data.count(_GRAPHIC_CONTROL) + data.count(_IMAGE_DESCRIPTOR, 0, len(data) - 1)
    return markers > 1


def calculate_dimensions(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Fit ``width`` × ``height`` inside a bounding box, preserving aspect ratio.

    Sizes already inside the box are returned unchanged; nothing is enlarged.

    >>> calculate_dimensions(4000, 2000, 3840, 3840)
    (3840, 1920)
    """
    if width <= max_width and height <= max_height:
        return width, height

    scale = min(max_width / width, max_height / height)
    return round(width * scale), round(height * scale)


class PillowDecoder:
    """Reads image dimensions with Pillow."""

    def get_image_dimensions(self, data: bytes) -> tuple[int, int]:
        """Return ``(width, height)``.

        Raises:
            PIL.UnidentifiedImageError: If the bytes are not a known format.
        """
        with Image.open(io.BytesIO(data)) as image:
            return image.size


class PillowTransformer:
    """Resizes and re-encodes images with Pillow.

    AVIF output needs a Pillow build with AVIF support; without it the encode
    raises, and the service records the variant as absent.
    """

    def encode(
        self,
        data: bytes,
        *,
        width: int,
        height: int,
        fit: str,
        format: str,
        quality: int,
    ) -> tuple[bytes, str]:
        """Resize to the target box and encode.

        Args:
            data: Source image bytes.
            width: Target width.
            height: Target height.
            fit: ``"scale-down"`` shrinks to fit the box and never enlarges;
                any other value resizes to exactly ``width`` × ``height``.
            format: Output format name, e.g. ``"webp"`` or ``"avif"``.
            quality: Encoder quality (1-100).

        Returns:
            Encoded bytes and their MIME type.
        """
        with Image.open(io.BytesIO(data)) as source:
            image = source.copy()

        if fit == SCALE_DOWN:
            image.thumbnail((width, height), Image.Resampling.LANCZOS)
        else:
            image = image.resize((width, height), Image.Resampling.LANCZOS)

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if image.has_transparency_data else "RGB")

        buffer = io.BytesIO()
        image.save(buffer, format=format.upper(), quality=quality)
        return buffer.getvalue(), f"image/{format.lower()}"


class CompressionService:
    """Produces WebP/AVIF variants of uploaded images.

    Args:
        transformer: Object with a Pillow-compatible ``encode`` method.
        decoder: Object with ``get_image_dimensions``.
        avif_max_dimension: Per-axis cap for AVIF output.
    """

    def __init__(
        self,
        transformer: PillowTransformer | None = None,
        decoder: PillowDecoder | None = None,
        *,
        avif_max_dimension: int | None = None,
    ) -> None:
        self.transformer = transformer or PillowTransformer()
        self.decoder = decoder or PillowDecoder()
        self.avif_max_dimension = avif_max_dimension or config.avif_max_dimension

    async def compress(
        self,
        data: bytes,
        format: str,
        options: CompressionOptions | None = None,
    ) -> CompressionResult:
        """Compress *data* into the requested variants.

        Args:
            data: Raw upload bytes.
            format: Declared source format (``"gif"``, ``"png"``, ...).
            options: Compression settings; defaults when omitted.

        Returns:
            The original bytes plus whichever variants were produced.

        Raises:
            PIL.UnidentifiedImageError: If the dimensions cannot be read.
        """
        opts = options or CompressionOptions()

        is_animated = format.lower() == "gif" and is_animated_gif(data)
        if is_animated and opts.preserve_animation:
            logger.info("Animated GIF detected; keeping original bytes only")
            return CompressionResult(original=data, is_animated=True)

        width, height = self.decoder.get_image_dimensions(data)
        target = calculate_dimensions(width, height, opts.max_width, opts.max_height)
        avif_target = calculate_dimensions(
            width,
            height,
            min(opts.max_width, self.avif_max_dimension),
            min(opts.max_height, self.avif_max_dimension),
        )

        webp, avif = await asyncio.gather(
            self._encode_variant(data, "webp", opts.quality, target) if opts.generate_webp else _absent(),
            self._encode_variant(data, "avif", opts.quality, avif_target) if opts.generate_avif else _absent(),
        )

        return CompressionResult(original=data, is_animated=is_animated, webp=webp, avif=avif)

    async def _encode_variant(
        self,
        data: bytes,
        format: str,
        quality: int,
        dimensions: tuple[int, int],
    ) -> CompressedImage | None:
        width, height = dimensions
        try:
            encoded, content_type = await asyncio.to_thread(
                self.transformer.encode,
                data,
                width=width,
                height=height,
                fit=SCALE_DOWN,
                format=format,
                quality=quality,
            )
        except Exception as e:
            logger.error(f"{format.upper()} compression failed: {e}", exc_info=True)
            return None
        return CompressedImage(data=encoded, content_type=content_type, size=len(encoded))


async def _absent() -> None:
    return None
