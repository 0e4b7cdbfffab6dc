"""
Overlay image pipeline for Viewfinder Service.

Decodes a picked image, rotates it upright from its orientation tag, and
derives a binary Sobel edge map for live comparison against the preview.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from viewfinder_service.config import CONFIG
from viewfinder_service.exceptions import DecodeError, ImageSourceError
from viewfinder_service.image_source import ImageSourcePort, Orientation, read_exif_orientation

logger = logging.getLogger(__name__)

# Edge threshold on floor(sqrt(Gx² + Gy²))
EDGE_THRESHOLD = 128

LUMA_WEIGHTS = (0.299, 0.587, 0.114)

OPAQUE_WHITE = (255, 255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)

OrientationHint = Union[Orientation, int, None]


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """
    Immutable row-major RGBA image.

    ``pixels`` is a read-only uint8 array of shape (height, width, 4).
    """

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.shape != (self.height, self.width, 4) or self.pixels.dtype != np.uint8:
            raise ValueError(
                f"pixels must be uint8 of shape ({self.height}, {self.width}, 4), "
                f"got {self.pixels.dtype} {self.pixels.shape}"
            )
        self.pixels.setflags(write=False)

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "PixelBuffer":
        height, width = pixels.shape[:2]
        return cls(width=width, height=height, pixels=np.ascontiguousarray(pixels, dtype=np.uint8))

    @classmethod
    def from_image(cls, img: Image.Image) -> "PixelBuffer":
        return cls.from_array(np.asarray(img.convert("RGBA"), dtype=np.uint8).copy())

    @classmethod
    def filled(cls, width: int, height: int, rgba: Tuple[int, int, int, int]) -> "PixelBuffer":
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[...] = rgba
        return cls(width=width, height=height, pixels=pixels)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        r, g, b, a = self.pixels[y, x]
        return int(r), int(g), int(b), int(a)

    def luma(self) -> np.ndarray:
        """Per-pixel luma, truncated to integers."""
        rgb = self.pixels[..., :3].astype(np.float64)
        r_w, g_w, b_w = LUMA_WEIGHTS
        return (rgb[..., 0] * r_w + rgb[..., 1] * g_w + rgb[..., 2] * b_w).astype(np.int64)

    def mean_luma(self) -> float:
        """Average truncated luma of the buffer, 0-255."""
        return average_luma(self.luma().astype(np.uint8).tobytes())

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels))

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self.to_image().save(buffer, format="PNG")
        return buffer.getvalue()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.size == other.size and np.array_equal(self.pixels, other.pixels)


def decode_image(data: bytes, max_pixels: Optional[int] = None) -> PixelBuffer:
    """
    Decode encoded image bytes into an RGBA pixel buffer.

    The EXIF orientation is NOT applied here.

    Args:
        data: Encoded image (any format Pillow can read)
        max_pixels: Largest accepted width * height (defaults to CONFIG)

    Returns:
        PixelBuffer: Decoded pixels

    Raises:
        DecodeError: If the bytes are not a readable image or are too large
    """
    limit = max_pixels if max_pixels is not None else CONFIG.max_image_pixels
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            if width * height > limit:
                raise DecodeError(
                    f"Image is {width}x{height}, larger than the {limit} pixel limit"
                )
            img.load()
            return PixelBuffer.from_image(img)
    except DecodeError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e


def rotate(src: PixelBuffer, degrees: int) -> PixelBuffer:
    """
    Rotate a buffer clockwise by a right angle.

    Pixels are remapped exactly; width and height swap for 90 and 270.
    Any angle other than 90, 180 or 270 returns the source unchanged.
    """
    if degrees not in (90, 180, 270):
        if degrees != 0:
            logger.warning(f"Unsupported rotation {degrees}°, leaving image as is")
        return src
    return PixelBuffer.from_array(np.rot90(src.pixels, k=-(degrees // 90)))


def sobel_edges(src: PixelBuffer) -> PixelBuffer:
    """
    Binary edge map of a buffer using the 3x3 Sobel operator.

    Each interior pixel's 3x3 neighbourhood is converted to luma
    (0.299R + 0.587G + 0.114B, truncated) and convolved with

        Gx = [[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]]
        Gy = [[-1, -2, -1], [0, 0, 0], [1, 2, 1]]

    Pixels where floor(sqrt(Gx² + Gy²)) exceeds EDGE_THRESHOLD become opaque
    white, everything else (including the one-pixel border) stays
    transparent.

    Args:
        src: Source buffer

    Returns:
        PixelBuffer: Edge map with the same dimensions as src
    """
    out = np.zeros((src.height, src.width, 4), dtype=np.uint8)
    if src.width < 3 or src.height < 3:
        return PixelBuffer(width=src.width, height=src.height, pixels=out)

    p = src.luma()
    top, mid, bottom = p[:-2], p[1:-1], p[2:]

    gx = (
        (top[:, 2:] + 2 * mid[:, 2:] + bottom[:, 2:])
        - (top[:, :-2] + 2 * mid[:, :-2] + bottom[:, :-2])
    )
    gy = (
        (bottom[:, :-2] + 2 * bottom[:, 1:-1] + bottom[:, 2:])
        - (top[:, :-2] + 2 * top[:, 1:-1] + top[:, 2:])
    )
    magnitude = np.floor(np.sqrt((gx * gx + gy * gy).astype(np.float64))).astype(np.int64)

    out[1:-1, 1:-1][magnitude > EDGE_THRESHOLD] = OPAQUE_WHITE
    return PixelBuffer(width=src.width, height=src.height, pixels=out)


def average_luma(plane: Union[bytes, bytearray, memoryview]) -> float:
    """Mean of the unsigned 8-bit samples of a luminance plane."""
    samples = np.frombuffer(plane, dtype=np.uint8)
    if samples.size == 0:
        return 0.0
    return float(samples.mean())


class OverlayPipeline:
    """
    Owner of the current overlay buffer pair.

    Every successful load replaces both buffers together; a failed load
    discards them. Not safe for concurrent loads: callers that issue
    overlapping requests must drop superseded results themselves.
    """

    def __init__(self, max_image_pixels: Optional[int] = None) -> None:
        self._max_image_pixels = max_image_pixels
        self._original: Optional[PixelBuffer] = None
        self._edge_map: Optional[PixelBuffer] = None
        self._rotation = 0

    @property
    def original(self) -> Optional[PixelBuffer]:
        return self._original

    @property
    def edge_map(self) -> Optional[PixelBuffer]:
        return self._edge_map

    @property
    def rotation(self) -> int:
        """Clockwise rotation applied to the current original, in degrees."""
        return self._rotation

    @property
    def has_overlay(self) -> bool:
        return self._original is not None

    def clear(self) -> None:
        self._original = None
        self._edge_map = None
        self._rotation = 0

    def load(
        self, source_bytes: bytes, orientation_hint: OrientationHint = None
    ) -> Tuple[PixelBuffer, PixelBuffer]:
        """
        Decode, orient and edge-detect a picked image.

        Args:
            source_bytes: Encoded image bytes
            orientation_hint: EXIF orientation; read from the bytes when None

        Returns:
            tuple: (original, edge_map), both the same size

        Raises:
            DecodeError: If the bytes cannot be decoded. The previous pair
                is discarded.
        """
        if orientation_hint is None:
            orientation = read_exif_orientation(source_bytes)
        else:
            orientation = Orientation.from_tag(orientation_hint)

        try:
            decoded = decode_image(source_bytes, self._max_image_pixels)
        except DecodeError as e:
            logger.warning(f"Overlay decode failed: {e}")
            self.clear()
            raise

        degrees = orientation.rotation_degrees
        original = rotate(decoded, degrees)
        edge_map = sobel_edges(original)

        self._original, self._edge_map, self._rotation = original, edge_map, degrees
        edge_count = int(np.count_nonzero(edge_map.pixels[..., 3]))
        logger.info(
            f"Overlay loaded: {original.width}x{original.height}, "
            f"rotated {degrees}°, {edge_count} edge pixels"
        )
        return original, edge_map

    def load_reference(
        self, source: ImageSourcePort, reference: str
    ) -> Tuple[PixelBuffer, PixelBuffer]:
        """
        Load an overlay through the image source port.

        Any failure discards the previous pair.

        Raises:
            ImageSourceError: If the reference cannot be read
            DecodeError: If the bytes cannot be decoded
        """
        try:
            data = source.read_bytes(reference)
            orientation = source.read_orientation(reference)
        except ImageSourceError as e:
            logger.warning(f"Overlay source unavailable: {e}")
            self.clear()
            raise
        return self.load(data, orientation)
