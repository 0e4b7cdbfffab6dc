"""
Image Source Port for the overlay pipeline.

Resolves user-picked references to raw bytes plus the EXIF orientation
needed to display them upright.
"""

from __future__ import annotations

import io
import logging
from enum import IntEnum
from pathlib import Path
from typing import Protocol, Union, runtime_checkable

from PIL import Image, UnidentifiedImageError

from viewfinder_service.exceptions import ImageSourceError

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 274


class Orientation(IntEnum):
    """EXIF orientation tag values."""

    NORMAL = 1
    FLIP_HORIZONTAL = 2
    ROTATE_180 = 3
    FLIP_VERTICAL = 4
    TRANSPOSE = 5
    ROTATE_90 = 6
    TRANSVERSE = 7
    ROTATE_270 = 8

    @property
    def rotation_degrees(self) -> int:
        """Clockwise rotation that makes the image upright; 0 for mirrored tags."""
        return _ROTATIONS.get(self, 0)

    @classmethod
    def from_tag(cls, value: Union[int, "Orientation", None]) -> "Orientation":
        """Map a raw tag value to an Orientation, treating unknown values as NORMAL."""
        if value is None:
            return cls.NORMAL
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            logger.warning(f"Unknown EXIF orientation {value!r}, treating as normal")
            return cls.NORMAL


_ROTATIONS = {
    Orientation.ROTATE_90: 90,
    Orientation.ROTATE_180: 180,
    Orientation.ROTATE_270: 270,
}


def read_exif_orientation(data: bytes) -> Orientation:
    """
    Read the EXIF orientation tag from encoded image bytes.

    Returns NORMAL when the bytes carry no EXIF block or cannot be parsed;
    decoding problems are reported later by the pipeline itself.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            tag = img.getexif().get(EXIF_ORIENTATION_TAG)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        logger.debug(f"No readable EXIF orientation: {e}")
        return Orientation.NORMAL
    return Orientation.from_tag(tag)


@runtime_checkable
class ImageSourcePort(Protocol):
    """Port supplied by the host to resolve picked image references."""

    def read_bytes(self, reference: str) -> bytes:
        """
        Read the encoded image behind a reference.

        Raises:
            ImageSourceError: If the reference cannot be read
        """
        ...

    def read_orientation(self, reference: str) -> Orientation:
        """Return the orientation recorded for the reference."""
        ...


class FileImageSource:
    """
    Image source resolving references as filesystem paths.

    With a ``root``, references must be relative paths that stay inside it;
    absolute paths and paths escaping the root are refused. Without one,
    any path is read as given.
    """

    def __init__(self, root: Union[str, Path, None] = None) -> None:
        self._root = Path(root).expanduser().resolve() if root is not None else None

    def _resolve(self, reference: str) -> Path:
        path = Path(reference).expanduser()
        if self._root is None:
            return path
        if path.is_absolute():
            logger.warning(f"Refusing absolute image path {reference!r}")
            raise ImageSourceError(f"Cannot read image '{reference}': absolute paths are not allowed")
        resolved = (self._root / path).resolve()
        if not resolved.is_relative_to(self._root):
            logger.warning(f"Refusing image path {reference!r} outside {self._root}")
            raise ImageSourceError(f"Cannot read image '{reference}': path is outside the image root")
        return resolved

    def read_bytes(self, reference: str) -> bytes:
        path = self._resolve(reference)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read image {path}: {e}")
            raise ImageSourceError(f"Cannot read image '{reference}': {e.strerror or e}") from e

    def read_orientation(self, reference: str) -> Orientation:
        return read_exif_orientation(self.read_bytes(reference))
