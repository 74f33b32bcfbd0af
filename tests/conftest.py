"""
Pytest configuration and fixtures for ImageVault tests
"""

import io
import os

# Ensure test-friendly environment prior to importing the app
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("STORE_DRIVER", "memory")
os.environ.setdefault("STORAGE_DRIVER", "memory")
os.environ.setdefault("METRICS_ENABLED", "1")

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from PIL import Image  # noqa: E402

from imagevault.db import close_db, init_db  # noqa: E402
from imagevault.services.images import ImageService  # noqa: E402
from imagevault.services.source import SourceFetcher  # noqa: E402
from imagevault.services.storage import MemoryStorage  # noqa: E402
from imagevault.services.store import MemoryImageStore  # noqa: E402


def make_picture(seed: int = 0, size=(256, 256), grid: int = 32) -> Image.Image:
    """A smooth random RGB picture; different seeds give unrelated pictures."""
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, size=(grid, grid, 3), dtype=np.uint8)
    return Image.fromarray(small).resize(size, Image.Resampling.BICUBIC)


def encode_picture(img: Image.Image, fmt: str = "PNG", **save_kw) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kw)
    return buf.getvalue()


def make_image_bytes(fmt: str = "PNG", seed: int = 0, size=(256, 256), **save_kw) -> bytes:
    return encode_picture(make_picture(seed, size), fmt, **save_kw)


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG", seed=1)


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes("JPEG", seed=2, quality=95)


@pytest.fixture
def store():
    return MemoryImageStore()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def service(store, storage):
    return ImageService(store=store, storage=storage, fetcher=SourceFetcher(timeout=5.0))


@pytest.fixture(scope="function")
async def db_setup():
    """Initialize a fresh in-memory SQLite database for each test."""
    await init_db("sqlite://:memory:")
    try:
        yield
    finally:
        await close_db()


@pytest.fixture
def make_image():
    """Factory for encoded test pictures: make_image(fmt, seed=..., size=..., **save_kw)."""
    return make_image_bytes


@pytest.fixture
def picture():
    return make_picture


@pytest.fixture
def encode():
    return encode_picture
