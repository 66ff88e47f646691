"""Shared fakes and image helpers for the test suite."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

import pytest
from PIL import Image

from imagehandler.config import Settings
from imagehandler.imaging.errors import CollaboratorError
from imagehandler.imaging.watermark import WatermarkComposer, WatermarkTemplates
from imagehandler.services.face_detector import DetectedFace
from imagehandler.services.pool import ProcessingPool


def make_image(
    width: int,
    height: int,
    colour: tuple[int, ...] = (255, 255, 255),
    fmt: str = "PNG",
    mode: str = "RGB",
) -> bytes:
    """Encode a solid-colour image."""
    buffer = io.BytesIO()
    Image.new(mode, (width, height), colour).save(buffer, format=fmt)
    return buffer.getvalue()


def decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class FakeFetcher:
    """In-memory overlay store keyed by (bucket, key)."""

    def __init__(self, objects: dict[tuple[str, str], bytes] | None = None) -> None:
        self.objects = objects or {}
        self.calls: list[tuple[str, str]] = []

    async def get(self, bucket: str, key: str) -> bytes:
        self.calls.append((bucket, key))
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise CollaboratorError(404, "NoSuchKey", "The specified key does not exist.") from None


class FakeDetector:
    """Returns canned faces, or raises a canned error."""

    def __init__(self, faces: list[DetectedFace] | None = None, error: Exception | None = None) -> None:
        self.faces = faces or []
        self.error = error
        self.images: list[bytes] = []

    async def detect(self, image: bytes) -> list[DetectedFace]:
        self.images.append(image)
        if self.error is not None:
            raise self.error
        return self.faces


@pytest.fixture(scope="session")
def watermark_templates() -> WatermarkTemplates:
    return WatermarkTemplates.load()


@pytest.fixture()
def watermarks(watermark_templates: WatermarkTemplates) -> WatermarkComposer:
    return WatermarkComposer(watermark_templates)


@pytest.fixture()
def pool() -> Iterator[ProcessingPool]:
    processing_pool = ProcessingPool(Settings())
    yield processing_pool
    processing_pool.shutdown()
