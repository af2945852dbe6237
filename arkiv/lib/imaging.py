"""Image optimization for uploads using Pillow.

``optimize_image`` is pure and blocking; callers on the event loop run it
through ``asyncio.to_thread``.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from arkiv.lib.errors import UnsupportedTypeError

if TYPE_CHECKING:
    from arkiv.config import OptimizerConfig

logger = logging.getLogger(__name__)

MiB = 1024 * 1024

_FORMAT_TO_CONTENT_TYPE = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

_FORMAT_TO_EXTENSION = {
    "JPEG": "jpg",
    "PNG": "png",
    "WEBP": "webp",
    "GIF": "gif",
    "BMP": "bmp",
    "TIFF": "tiff",
}

# Formats Pillow can both read and write that we are willing to emit
_WRITABLE_FORMATS = set(_FORMAT_TO_CONTENT_TYPE)


@dataclass(frozen=True)
class OptimizationOptions:
    max_width: int = 1920
    max_height: int = 1080
    quality: int = 85
    format: str = "original"
    max_size_bytes: int = 2 * MiB


@dataclass
class OptimizationResult:
    data: bytes
    format: str
    width: int | None
    height: int | None
    original_size: int
    optimized_size: int
    was_optimized: bool
    compression_ratio: float
    resized: bool = False

    @property
    def content_type(self) -> str:
        return _FORMAT_TO_CONTENT_TYPE.get(self.format.upper(), "application/octet-stream")

    @property
    def extension(self) -> str:
        return _FORMAT_TO_EXTENSION.get(self.format.upper(), self.format.lower())

    @property
    def saved_bytes(self) -> int:
        return self.original_size - self.optimized_size

    def to_dict(self) -> dict:
        saved_pct = (self.saved_bytes / self.original_size * 100) if self.original_size else 0.0
        return {
            "wasOptimized": self.was_optimized,
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "originalSize": self.original_size,
            "optimizedSize": self.optimized_size,
            "compressionRatio": round(self.compression_ratio, 2),
            "savedBytes": self.saved_bytes,
            "savedPercentage": round(saved_pct, 1),
        }


def detect_image_content_type(data: bytes) -> str | None:
    """Detect image content type from magic bytes.

    Returns ``None`` if the data does not match a known image signature.
    """
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def recommended_settings(mime_type: str, config: OptimizerConfig | None = None) -> OptimizationOptions:
    """Pick optimizer options for a MIME type.

    JPEG, PNG and WEBP are re-encoded in their own format with per-format
    quality; every other image type keeps its original format.
    """
    if config is None:
        base = OptimizationOptions()
        jpeg_q, png_q, webp_q = 85, 90, 85
    else:
        base = OptimizationOptions(
            max_width=config.max_width,
            max_height=config.max_height,
            max_size_bytes=config.max_size_bytes,
            quality=config.jpeg_quality,
        )
        jpeg_q, png_q, webp_q = config.jpeg_quality, config.png_quality, config.webp_quality

    if mime_type == "image/png":
        return replace(base, quality=png_q, format="png")
    if mime_type in ("image/jpeg", "image/jpg"):
        return replace(base, quality=jpeg_q, format="jpeg")
    if mime_type == "image/webp":
        return replace(base, quality=webp_q, format="webp")
    return replace(base, quality=jpeg_q, format="original")


def _probe(data: bytes) -> tuple[str | None, int | None, int | None]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.format, img.width, img.height
    except (UnidentifiedImageError, OSError):
        return None, None, None


def optimize_image(data: bytes, options: OptimizationOptions | None = None) -> OptimizationResult:
    """Shrink and re-encode an image when it exceeds ``options.max_size_bytes``.

    Small inputs come back untouched (same buffer, ``was_optimized=False``).
    Larger ones are downscaled to fit within ``max_width`` x ``max_height``
    (aspect preserved, never enlarged) and re-encoded at ``quality``.
    """
    opts = options or OptimizationOptions()
    original_size = len(data)

    if original_size <= opts.max_size_bytes:
        fmt, width, height = _probe(data)
        return OptimizationResult(
            data=data,
            format=(fmt or "unknown").lower(),
            width=width,
            height=height,
            original_size=original_size,
            optimized_size=original_size,
            was_optimized=False,
            compression_ratio=1.0,
        )

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        logger.info("Image could not be decoded for optimization: %s", exc)
        raise UnsupportedTypeError("Image could not be decoded.") from exc

    if opts.format == "original":
        output_format = img.format or "JPEG"
    else:
        output_format = opts.format.upper()
    if output_format == "JPG":
        output_format = "JPEG"
    if output_format not in _WRITABLE_FORMATS:
        output_format = "JPEG"

    resized = img.width > opts.max_width or img.height > opts.max_height
    if resized:
        img.thumbnail((opts.max_width, opts.max_height), Image.LANCZOS)

    if output_format == "JPEG" and img.mode not in ("RGB", "L"):
        # JPEG has no alpha channel; flatten onto white
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        img = background

    save_kwargs: dict = {}
    if output_format == "JPEG":
        save_kwargs.update(quality=opts.quality, optimize=True, progressive=True)
    elif output_format == "PNG":
        save_kwargs.update(optimize=True, compress_level=9)
    elif output_format == "WEBP":
        save_kwargs.update(quality=opts.quality, method=6)

    buf = io.BytesIO()
    img.save(buf, format=output_format, **save_kwargs)
    optimized = buf.getvalue()

    return OptimizationResult(
        data=optimized,
        format=output_format.lower(),
        width=img.width,
        height=img.height,
        original_size=original_size,
        optimized_size=len(optimized),
        was_optimized=True,
        compression_ratio=original_size / len(optimized),
        resized=resized,
    )


def format_bytes(size: int) -> str:
    """Human-readable byte count, e.g. ``format_bytes(1536) == "1.5 KB"``."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    while i < len(units) - 1 and size >= 1024 ** (i + 1):
        i += 1
    value = round(size / 1024**i, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"
