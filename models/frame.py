"""Captured photo frame handed to the face check.

Frames are transient RGBA buffers; they live for one validation call.
"""

import io
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError


class FrameDecodingError(Exception):
    """Raised when uploaded bytes cannot be read as an image."""

    pass


@dataclass(frozen=True)
class CapturedFrame:
    """RGBA pixel buffer of shape (height, width, 4), dtype uint8."""

    pixels: np.ndarray
    source_ref: Optional[str] = None

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(
                f"Expected an RGBA buffer of shape (h, w, 4), got {self.pixels.shape}"
            )

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @classmethod
    def from_rgba_bytes(
        cls, width: int, height: int, data: bytes, source_ref: Optional[str] = None
    ) -> "CapturedFrame":
        """Wrap a raw RGBA byte buffer (canvas ImageData layout)."""
        expected = width * height * 4
        if len(data) != expected:
            raise ValueError(
                f"RGBA buffer for {width}x{height} needs {expected} bytes, got {len(data)}"
            )
        pixels = np.frombuffer(data, dtype=np.uint8).reshape((height, width, 4))
        return cls(pixels=pixels, source_ref=source_ref)

    @classmethod
    def from_image_bytes(
        cls, data: bytes, source_ref: Optional[str] = None
    ) -> "CapturedFrame":
        """Decode an encoded photo (JPEG, PNG, WEBP) into an RGBA frame.

        Raises:
            FrameDecodingError: If the bytes are not a readable image, or the
                image exceeds Pillow's decompression-bomb pixel limit.
        """
        try:
            with Image.open(io.BytesIO(data)) as image:
                rgba = image.convert("RGBA")
                pixels = np.asarray(rgba, dtype=np.uint8)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise FrameDecodingError(f"Failed to decode image data: {e}") from e
        return cls(pixels=pixels, source_ref=source_ref)
