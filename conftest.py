"""
Shared fixtures: an in-memory database and synthetic selfie frames.

The "striped" frame is a skin-toned image with 4px vertical stripes. Every
facial region then has full skin coverage, high brightness variance and a
strong edge score, so it passes all face gates without a real photo.
"""

import io

import numpy as np
import pytest
from PIL import Image
from sqlmodel import SQLModel

import models  # noqa: F401  (table registration)
from db.session import build_engine
from models.frame import CapturedFrame

FRAME_WIDTH = 320
FRAME_HEIGHT = 240

LIGHT_SKIN = (230, 180, 150, 255)
DARK_SKIN = (150, 100, 70, 255)


def make_striped_pixels(width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT) -> np.ndarray:
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    columns = np.arange(width)
    pixels[:, (columns % 8) < 4] = LIGHT_SKIN
    pixels[:, (columns % 8) >= 4] = DARK_SKIN
    return pixels


def make_uniform_pixels(
    value: int = 128, width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT
) -> np.ndarray:
    pixels = np.full((height, width, 4), value, dtype=np.uint8)
    pixels[..., 3] = 255
    return pixels


def make_hat_pixels(width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT) -> np.ndarray:
    # Black band over the top region only; the forehead starts lower
    pixels = make_striped_pixels(width, height)
    pixels[: int(height * 0.13)] = (0, 0, 0, 255)
    return pixels


def to_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def striped_frame() -> CapturedFrame:
    return CapturedFrame(pixels=make_striped_pixels(), source_ref="striped.png")


@pytest.fixture
def uniform_frame() -> CapturedFrame:
    return CapturedFrame(pixels=make_uniform_pixels(), source_ref="uniform.png")


@pytest.fixture
def hat_frame() -> CapturedFrame:
    return CapturedFrame(pixels=make_hat_pixels(), source_ref="hat.png")


@pytest.fixture
def striped_png() -> bytes:
    return to_png(make_striped_pixels())


@pytest.fixture
def uniform_png() -> bytes:
    return to_png(make_uniform_pixels())
