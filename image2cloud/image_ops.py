"""Image sniffing and resizing utilities.

This module wraps the two image operations the ingestion pipeline needs,
using Pillow: classifying a byte stream as one of the supported codecs,
and producing a half-resolution copy re-encoded in the source codec.
Only PNG and JPEG are accepted; everything else is rejected before any
decoding is attempted.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Optional, Tuple

from PIL import Image  # type: ignore[import]

from .errors import DecodeError, DegenerateResize, EncodeError, UnsupportedFormat

PNG = "png"
JPEG = "jpeg"
SUPPORTED_FORMATS = (PNG, JPEG)

# Fixed re-encoding policy for the lossy codec.
JPEG_QUALITY = 90

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SOI = b"\xff\xd8\xff"
_HEADER_SIZE = len(_PNG_SIGNATURE)

# Pillow reports JPEGs carrying an MPF (APP2) segment as MPO.
_PIL_FORMATS = {PNG: ("PNG",), JPEG: ("JPEG", "MPO")}
_CONTENT_TYPES = {PNG: "image/png", JPEG: "image/jpeg"}


@dataclass(frozen=True)
class ImageArtifact:
    """A decoded-then-recompressed image ready for publishing."""

    width: int
    height: int
    format: str
    quality: Optional[int]
    data: bytes

    @property
    def content_type(self) -> str:
        return content_type_for(self.format)


def content_type_for(fmt: str) -> str:
    """Return the MIME type for a supported format tag."""
    try:
        return _CONTENT_TYPES[fmt]
    except KeyError:
        raise UnsupportedFormat(f"unknown format tag '{fmt}'") from None


def _read_header(stream: BinaryIO, size: int) -> bytes:
    """Return up to ``size`` leading bytes without moving the read position.

    Buffered readers are peeked; other streams are read and then seeked
    back to where they started.
    """
    peek = getattr(stream, "peek", None)
    if callable(peek):
        head = peek(size)
        if len(head) >= size or not stream.seekable():
            return bytes(head[:size])
    start = stream.tell()
    try:
        return stream.read(size)
    finally:
        stream.seek(start)


def sniff_format(stream: BinaryIO) -> str:
    """Classify a stream as PNG or JPEG from its magic bytes.

    Args:
        stream: A binary stream positioned at the start of the image.

    Returns:
        ``"png"`` or ``"jpeg"``.

    Raises:
        UnsupportedFormat: For empty, truncated or non-image content.
    """
    head = _read_header(stream, _HEADER_SIZE)
    if head.startswith(_PNG_SIGNATURE):
        return PNG
    if head.startswith(_JPEG_SOI):
        return JPEG
    if not head:
        raise UnsupportedFormat("empty stream")
    raise UnsupportedFormat("stream is not a PNG or JPEG image")


def sniff_bytes(data: bytes) -> str:
    """Classify raw bytes. See :func:`sniff_format`."""
    return sniff_format(BytesIO(data))


def half_size(width: int, height: int) -> Tuple[int, int]:
    """Return the halved dimensions, refusing to go below one pixel."""
    new_width, new_height = width // 2, height // 2
    if new_width < 1 or new_height < 1:
        raise DegenerateResize(
            f"cannot halve a {width}x{height} image to {new_width}x{new_height}"
        )
    return new_width, new_height


def _decode(data: bytes, fmt: str) -> Image.Image:
    """Open and fully load ``data``, checking it really is ``fmt``."""
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"could not decode {fmt} image: {exc}") from exc
    if img.format not in _PIL_FORMATS[fmt]:
        raise DecodeError(f"expected {fmt} data but decoded {img.format}")
    return img


def _prepare_for_resample(img: Image.Image) -> Image.Image:
    # Pillow falls back to nearest-neighbour for palette and bilevel modes.
    if img.mode == "P":
        return img.convert("RGBA" if "transparency" in img.info else "RGB")
    if img.mode == "PA":
        return img.convert("RGBA")
    if img.mode == "1":
        return img.convert("L")
    if img.mode.startswith("I;16"):
        return img.convert("I")
    return img


def _encode(img: Image.Image, fmt: str) -> bytes:
    buffer = BytesIO()
    try:
        if fmt == JPEG:
            img.save(buffer, format="JPEG", quality=JPEG_QUALITY)
        else:
            img.save(buffer, format="PNG")
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"could not encode {fmt} image: {exc}") from exc
    return buffer.getvalue()


def halve_image(data: bytes, fmt: str) -> ImageArtifact:
    """Produce a half-width, half-height copy of an image.

    The copy is resampled with a Lanczos filter and re-encoded in the
    source format; JPEG output uses :data:`JPEG_QUALITY`.

    Args:
        data: Raw image bytes.
        fmt: Format tag as returned by :func:`sniff_format`.

    Returns:
        The re-encoded :class:`ImageArtifact`.

    Raises:
        UnsupportedFormat: If ``fmt`` is not a supported tag.
        DecodeError: If ``data`` is not a valid image of ``fmt``.
        DegenerateResize: If either source dimension is below 2.
        EncodeError: If the result cannot be serialized.
    """
    if fmt not in SUPPORTED_FORMATS:
        raise UnsupportedFormat(f"unknown format tag '{fmt}'")
    img = _decode(data, fmt)
    size = half_size(*img.size)
    resized = _prepare_for_resample(img).resize(size, Image.LANCZOS)
    encoded = _encode(resized, fmt)
    return ImageArtifact(
        width=size[0],
        height=size[1],
        format=fmt,
        quality=JPEG_QUALITY if fmt == JPEG else None,
        data=encoded,
    )
