"""Tests for the edit pipeline."""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
from conftest import FakeDetector, FakeFetcher, decode, make_image
from PIL import Image

from imagehandler.imaging.backend import PillowImage
from imagehandler.imaging.errors import (
    CollaboratorError,
    FaceIndexOutOfRangeError,
    ImageRequestError,
    PaddingOutOfBoundsError,
    UnsupportedEditError,
)
from imagehandler.imaging.geometry import Fit, ImageMetadata, ResizeOptions
from imagehandler.imaging.handler import ImageHandler, ImageRequest
from imagehandler.imaging.watermark import WatermarkComposer, WatermarkTemplates
from imagehandler.services.face_detector import BoundingBox, DetectedFace
from imagehandler.services.pool import ProcessingPool

RED = (255, 0, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)

FACE = DetectedFace(BoundingBox(left=0.1, top=0.2, width=0.5, height=0.4), confidence=99.0)

HandlerFactory = Callable[..., ImageHandler]


@pytest.fixture()
def make_handler(watermarks: WatermarkComposer, pool: ProcessingPool) -> HandlerFactory:
    def factory(
        fetcher: FakeFetcher | None = None,
        detector: FakeDetector | None = None,
        opener: Callable[[bytes], object] = PillowImage.open,
    ) -> ImageHandler:
        return ImageHandler(
            fetcher=fetcher or FakeFetcher(),
            detector=detector or FakeDetector([FACE]),
            watermarks=watermarks,
            pool=pool,
            opener=opener,  # type: ignore[arg-type]
        )

    return factory


async def _process(
    handler: ImageHandler, original: bytes, edits: dict, output_format: str | None = None
) -> Image.Image:
    encoded = await handler.process(ImageRequest(original_image=original, edits=edits, output_format=output_format))
    return decode(base64.b64decode(encoded))


# ---------------------------------------------------------------------------
# Plan execution
# ---------------------------------------------------------------------------


class TestProcess:
    @pytest.mark.parametrize("edits", [None, {}])
    async def test_no_edits_returns_original_bytes(self, make_handler: HandlerFactory, edits: dict | None) -> None:
        original = make_image(30, 20, fmt="JPEG")
        encoded = await make_handler().process(ImageRequest(original_image=original, edits=edits))
        assert base64.b64decode(encoded) == original

    async def test_default_resize_runs_first(self, make_handler: HandlerFactory) -> None:
        handle = MagicMock()
        handle.metadata.return_value = ImageMetadata(10, 10)
        handler = make_handler(FakeFetcher(), FakeDetector(), opener=MagicMock(return_value=handle))

        await handler.apply_edits(b"raw", {"rotate": 90})

        assert handle.method_calls == [
            call.metadata(),
            call.resize(ResizeOptions(fit=Fit.INSIDE)),
            call.supports("rotate"),
            call.apply("rotate", 90),
        ]

    async def test_default_resize_keeps_dimensions(self, make_handler: HandlerFactory) -> None:
        result = await _process(make_handler(), make_image(30, 20), {"grayscale": True})
        assert result.size == (30, 20)
        assert result.mode == "L"

    async def test_edits_see_previous_results(self, make_handler: HandlerFactory) -> None:
        edits = {"resize": {"width": 20}, "rotate": 90, "extract": {"left": 0, "top": 0, "width": 5, "height": 20}}
        result = await _process(make_handler(), make_image(40, 20), edits)
        assert result.size == (5, 20)

    async def test_rotate_zero_is_idempotent(self, make_handler: HandlerFactory) -> None:
        handler = make_handler()
        once = await handler.process(ImageRequest(make_image(30, 20), {"rotate": 0}))
        twice = await handler.process(ImageRequest(base64.b64decode(once), {"rotate": 0}))
        assert decode(base64.b64decode(once)).tobytes() == decode(base64.b64decode(twice)).tobytes()

    async def test_output_format(self, make_handler: HandlerFactory) -> None:
        result = await _process(make_handler(), make_image(30, 20, fmt="JPEG"), {"flip": True}, "png")
        assert result.format == "PNG"

    async def test_source_format_kept(self, make_handler: HandlerFactory) -> None:
        result = await _process(make_handler(), make_image(30, 20, fmt="JPEG"), {"flip": True})
        assert result.format == "JPEG"

    async def test_unsupported_edit(self, make_handler: HandlerFactory) -> None:
        with pytest.raises(UnsupportedEditError) as exc_info:
            await make_handler().process(ImageRequest(make_image(10, 10), {"explode": True}))
        assert exc_info.value.to_dict() == {
            "status": 400,
            "code": "ImageEdits::UnsupportedEdit",
            "message": "Unsupported edit operation: explode",
        }

    async def test_undecodable_original(self, make_handler: HandlerFactory) -> None:
        with pytest.raises(ImageRequestError) as exc_info:
            await make_handler().process(ImageRequest(b"not an image", {"rotate": 90}))
        assert exc_info.value.code == "ImageRequest::InvalidImage"

    async def test_decompression_bomb_is_too_large(self, make_handler: HandlerFactory) -> None:
        with patch.object(Image, "MAX_IMAGE_PIXELS", 100), pytest.raises(ImageRequestError) as exc_info:
            await make_handler().process(ImageRequest(make_image(30, 20), {"rotate": 90}))
        assert (exc_info.value.status, exc_info.value.code) == (413, "ImageRequest::TooLarge")

    async def test_image_work_runs_on_pool_threads(self, make_handler: HandlerFactory) -> None:
        threads: list[str] = []

        def record(*args: object) -> bytes:
            threads.append(threading.current_thread().name)
            return b"encoded"

        handle = MagicMock()
        handle.metadata.return_value = ImageMetadata(10, 10)
        handle.supports.return_value = True
        handle.resize.side_effect = record
        handle.apply.side_effect = record
        handle.to_buffer.side_effect = record

        def opener(data: bytes) -> MagicMock:
            record()
            return handle

        encoded = await make_handler(opener=opener).process(ImageRequest(b"raw", {"rotate": 90}))

        assert base64.b64decode(encoded) == b"encoded"
        assert len(threads) == 4
        assert all(name.startswith("imagehandler-io") for name in threads)


# ---------------------------------------------------------------------------
# overlayWith
# ---------------------------------------------------------------------------


class TestOverlay:
    @pytest.fixture()
    def fetcher(self) -> FakeFetcher:
        return FakeFetcher({("assets", "logo.png"): make_image(20, 20, RED)})

    async def test_placement(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png", "options": {"left": "-30", "top": "10p"}}}
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)

        assert result.getpixel((155, 15))[:3] == RED
        assert result.getpixel((145, 15))[:3] == WHITE
        assert result.getpixel((155, 5))[:3] == WHITE
        assert fetcher.calls == [("assets", "logo.png")]

    async def test_default_position_is_origin(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png"}}
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)
        assert result.getpixel((5, 5))[:3] == RED
        assert result.getpixel((25, 25))[:3] == WHITE

    async def test_full_alpha_leaves_image_unchanged(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png", "alpha": 100}}
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)
        assert result.convert("RGB").getextrema() == ((255, 255), (255, 255), (255, 255))

    async def test_out_of_range_alpha_is_opaque(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png", "alpha": 150}}
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)
        assert result.getpixel((5, 5))[:3] == RED

    async def test_sized_by_ratio(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png", "wRatio": 5, "options": {"left": "0"}}}
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)
        red, green, _ = result.getpixel((5, 5))[:3]
        assert red > 200
        assert green < 60
        assert result.getpixel((15, 5))[:3] == WHITE

    async def test_placement_uses_pending_resize(self, make_handler: HandlerFactory, fetcher: FakeFetcher) -> None:
        edits = {
            "overlayWith": {"bucket": "assets", "key": "logo.png", "options": {"left": "50p", "top": "0"}},
            "resize": {"width": 100},
        }
        result = await _process(make_handler(fetcher), make_image(200, 100, WHITE), edits)

        assert result.size == (100, 50)
        red, green, _ = result.getpixel((30, 5))[:3]
        assert red > 200
        assert green < 60
        assert result.getpixel((70, 5))[:3] == WHITE

    async def test_missing_overlay(self, make_handler: HandlerFactory) -> None:
        edits = {"overlayWith": {"bucket": "assets", "key": "nope.png"}}
        with pytest.raises(CollaboratorError) as exc_info:
            await make_handler().process(ImageRequest(make_image(20, 20), edits))
        assert (exc_info.value.status, exc_info.value.code) == (404, "NoSuchKey")

    async def test_pool_timeout_propagates(self, make_handler: HandlerFactory) -> None:
        fetcher = MagicMock()
        fetcher.get = AsyncMock(side_effect=TimeoutError())
        edits = {"overlayWith": {"bucket": "assets", "key": "logo.png"}}
        with pytest.raises(TimeoutError):
            await make_handler(fetcher).process(ImageRequest(make_image(20, 20), edits))


# ---------------------------------------------------------------------------
# smartCrop
# ---------------------------------------------------------------------------


class TestSmartCrop:
    async def test_crops_to_padded_face(self, make_handler: HandlerFactory) -> None:
        detector = FakeDetector([FACE])
        edits = {"smartCrop": {"padding": 5}}
        result = await _process(make_handler(detector=detector), make_image(300, 200), edits)

        assert result.size == (160, 90)
        assert len(detector.images) == 1
        assert decode(detector.images[0]).format == "JPEG"

    async def test_detector_sees_current_image(self, make_handler: HandlerFactory) -> None:
        detector = FakeDetector([FACE])
        edits = {"resize": {"width": 150}, "smartCrop": {}}
        result = await _process(make_handler(detector=detector), make_image(300, 200), edits)

        assert decode(detector.images[0]).size == (150, 100)
        assert result.size == (75, 40)

    async def test_face_index_out_of_range(self, make_handler: HandlerFactory) -> None:
        with pytest.raises(FaceIndexOutOfRangeError):
            await make_handler().process(ImageRequest(make_image(300, 200), {"smartCrop": {"faceIndex": 1}}))

    async def test_padding_out_of_bounds(self, make_handler: HandlerFactory) -> None:
        detector = FakeDetector([DetectedFace(BoundingBox(0.5, 0.1, 0.5, 0.5), 90.0)])
        with pytest.raises(PaddingOutOfBoundsError) as exc_info:
            await make_handler(detector=detector).process(
                ImageRequest(make_image(300, 200), {"smartCrop": {"padding": 10}})
            )
        assert exc_info.value.code == "SmartCrop::PaddingOutOfBounds"

    async def test_detector_failure(self, make_handler: HandlerFactory) -> None:
        detector = FakeDetector(error=CollaboratorError(400, "InvalidImageFormatException", "bad image"))
        with pytest.raises(CollaboratorError) as exc_info:
            await make_handler(detector=detector).process(ImageRequest(make_image(30, 20), {"smartCrop": {}}))
        assert exc_info.value.code == "InvalidImageFormatException"

    async def test_pool_timeout_propagates(self, make_handler: HandlerFactory) -> None:
        detector = FakeDetector(error=TimeoutError())
        with pytest.raises(TimeoutError):
            await make_handler(detector=detector).process(ImageRequest(make_image(30, 20), {"smartCrop": {}}))


# ---------------------------------------------------------------------------
# TEPWatermark
# ---------------------------------------------------------------------------


class TestWatermark:
    @pytest.fixture()
    def mock_rasterize(self):
        with patch("imagehandler.imaging.watermark.rasterize", return_value=make_image(150, 150, BLUE)) as mock:
            yield mock

    async def test_skipped_on_narrow_image(self, make_handler: HandlerFactory, mock_rasterize: MagicMock) -> None:
        edits = {"TEPWatermark": {"options": {"name": "Ann", "style": "cute"}}}
        result = await _process(make_handler(), make_image(100, 100, WHITE), edits)

        mock_rasterize.assert_not_called()
        assert result.getpixel((10, 10))[:3] == WHITE

    async def test_cute_applies_at_200(self, make_handler: HandlerFactory, mock_rasterize: MagicMock) -> None:
        edits = {"TEPWatermark": {"options": {"name": "Ann", "style": "cute"}}}
        result = await _process(make_handler(), make_image(200, 200, WHITE), edits)

        mock_rasterize.assert_called_once()
        assert result.getpixel((100, 100))[:3] == BLUE
        assert result.getpixel((25, 25))[:3] == BLUE
        assert result.getpixel((10, 10))[:3] == WHITE
        assert result.getpixel((190, 190))[:3] == WHITE

    async def test_banner_is_centred(self, make_handler: HandlerFactory) -> None:
        edits = {"TEPWatermark": {"options": {"name": "Ann"}}}
        with patch("imagehandler.imaging.watermark.rasterize", return_value=make_image(340, 140, BLUE)):
            result = await _process(make_handler(), make_image(400, 200, WHITE), edits)

        assert result.getpixel((30, 30))[:3] == BLUE
        assert result.getpixel((369, 169))[:3] == BLUE
        assert result.getpixel((29, 29))[:3] == WHITE
        assert result.getpixel((370, 170))[:3] == WHITE

    async def test_banner_skipped_at_200(self, make_handler: HandlerFactory, mock_rasterize: MagicMock) -> None:
        edits = {"TEPWatermark": {"options": {"name": "Ann"}}}
        await _process(make_handler(), make_image(200, 200, WHITE), edits)
        mock_rasterize.assert_not_called()

    async def test_uses_pending_resize_width(self, make_handler: HandlerFactory, mock_rasterize: MagicMock) -> None:
        edits = {"TEPWatermark": {"options": {"name": "Ann"}}, "resize": {"width": 100}}
        await _process(make_handler(), make_image(400, 200, WHITE), edits)
        mock_rasterize.assert_not_called()

    async def test_fetched_brand_mark(
        self,
        make_handler: HandlerFactory,
        watermark_templates: WatermarkTemplates,
        mock_rasterize: MagicMock,
    ) -> None:
        fetcher = FakeFetcher({("brand", "mark.png"): make_image(40, 10, RED)})
        edits = {"TEPWatermark": {"bucket": "brand", "key": "mark.png", "options": {"name": "Ann"}}}
        await _process(make_handler(fetcher), make_image(400, 200, WHITE), edits)

        assert fetcher.calls == [("brand", "mark.png")]
        svg = mock_rasterize.call_args.args[0]
        assert base64.b64encode(watermark_templates.brand_mark).decode("ascii") not in svg
        assert "Ann" in svg

    async def test_brand_mark_not_fetched_when_skipped(
        self, make_handler: HandlerFactory, mock_rasterize: MagicMock
    ) -> None:
        fetcher = FakeFetcher({("brand", "mark.png"): make_image(40, 10, RED)})
        edits = {"TEPWatermark": {"bucket": "brand", "key": "mark.png", "options": {"name": "Ann"}}}
        await _process(make_handler(fetcher), make_image(100, 100, WHITE), edits)
        assert fetcher.calls == []
