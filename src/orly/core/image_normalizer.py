"""Resize and re-encode images for e-readers."""

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from orly.errors import ImageDecodeFailure

log = logging.getLogger(__name__)

# Anything smaller is packaged untouched
SMALL_IMAGE_THRESHOLD = 60 * 1024
KINDLE_MAX_WIDTH = 1072
DEFAULT_FORMAT = "JPEG"
SVG_FORMAT = "SVG"

_ALPHA_MODES = frozenset({"RGBA", "LA", "RGBa", "La", "PA"})


@dataclass(frozen=True)
class NormalizedImage:
    data: bytes
    format: str

    @property
    def media_type(self) -> str:
        return media_type_for(self.format)


def media_type_for(image_format: str) -> str:
    """Manifest media type for a Pillow format name."""
    if image_format == SVG_FORMAT:
        return "image/svg+xml"
    Image.init()
    return Image.MIME.get(image_format, f"image/{image_format.lower()}")


def is_svg(data: bytes) -> bool:
    head = data[:1024].lstrip().lower()
    return head.startswith((b"<svg", b"<?xml")) and b"<svg" in head


def has_alpha(image: Image.Image) -> bool:
    if image.mode in _ALPHA_MODES:
        return True
    return image.mode == "P" and "transparency" in image.info


def guess_format(data: bytes) -> str:
    """Best-effort format detection without decoding pixel data."""
    if is_svg(data):
        return SVG_FORMAT
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.format or DEFAULT_FORMAT
    except (UnidentifiedImageError, OSError):
        return DEFAULT_FORMAT


class ImageNormalizer:
    """Optimize image bytes, optionally constraining the width."""

    def __init__(self, max_width: int | None = None):
        self.max_width = max_width

    @classmethod
    def for_kindle(cls, kindle: bool) -> "ImageNormalizer":
        return cls(max_width=KINDLE_MAX_WIDTH if kindle else None)

    def normalize(self, data: bytes, source: str = "<image>") -> NormalizedImage:
        """Return the bytes to package and their format.

        Raises:
            ImageDecodeFailure: If a large image cannot be decoded or encoded.
        """
        if is_svg(data):
            return NormalizedImage(data, SVG_FORMAT)

        if len(data) < SMALL_IMAGE_THRESHOLD:
            log.debug(f"{source} is too small ({len(data)}), skipping optimizations")
            return NormalizedImage(data, guess_format(data))

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            raise ImageDecodeFailure(source, str(e)) from e

        if self.max_width and image.width > self.max_width:
            height = max(1, round(image.height * self.max_width / image.width))
            log.debug(
                f"Image {source} is too big {image.width}x{image.height}, "
                f"resizing to {self.max_width}x{height}"
            )
            image = image.resize((self.max_width, height), Image.Resampling.LANCZOS)

        if has_alpha(image):
            log.debug(f"Image {source} has alpha channel, saving as png")
            image_format = "PNG"
            if image.mode not in ("RGBA", "LA"):
                image = image.convert("RGBA")
        else:
            image_format = "JPEG"
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")

        buffer = io.BytesIO()
        try:
            image.save(buffer, format=image_format)
        except (OSError, ValueError) as e:
            raise ImageDecodeFailure(source, f"failed to encode as {image_format}: {e}") from e

        optimized = buffer.getvalue()
        change = (len(optimized) - len(data)) / len(data) * 100
        log.debug(
            f"Old image size: {len(data)}, new size: {len(optimized)}, "
            f"relative change: {change:.2f}%"
        )
        return NormalizedImage(optimized, image_format)
