"""Edit pipeline: applies an ordered edit plan to an original image.

One request is one sequential chain. Each edit sees the cumulative result of
the edits before it; collaborator calls (overlay fetch, face detection) are
awaited in place before the next edit starts.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from PIL import Image

from imagehandler.imaging.backend import CompositeLayer, PillowImage
from imagehandler.imaging.edits import (
    EditPlan,
    OverlayEdit,
    PassthroughEdit,
    ResizeEdit,
    SmartCropEdit,
    WatermarkEdit,
)
from imagehandler.imaging.errors import ImageRequestError, PaddingOutOfBoundsError, UnsupportedEditError
from imagehandler.imaging.geometry import ImageMetadata, projected_metadata
from imagehandler.imaging.placement import load_overlay, place
from imagehandler.imaging.smart_crop import crop_area, find_bounding_box
from imagehandler.imaging.watermark import should_apply

if TYPE_CHECKING:
    from imagehandler.imaging.backend import ImageHandle
    from imagehandler.imaging.placement import OverlayFetcher
    from imagehandler.imaging.watermark import WatermarkComposer
    from imagehandler.services.face_detector import FaceDetector
    from imagehandler.services.pool import ProcessingPool

logger = logging.getLogger(__name__)

# Encoding handed to the face detector.
DETECTION_FORMAT = "jpeg"


@dataclass(frozen=True)
class ImageRequest:
    """An already-fetched original image plus the caller's parsed edits."""

    original_image: bytes
    edits: Mapping[str, Any] | None = None
    output_format: str | None = None


@dataclass
class _PipelineState:
    image: ImageHandle
    plan: EditPlan
    resized: bool = False

    def target_metadata(self) -> ImageMetadata:
        """Current dimensions, projected through the plan's resize if it has not run yet."""
        current = self.image.metadata()
        if self.resized:
            return current
        return projected_metadata(current, self.plan.resize.options)


class ImageHandler:
    """Applies edit plans using an image backend and external collaborators.

    Decoding, pixel work and encoding are blocking, so each step is submitted
    to the processing pool on its own; no slot is held while a collaborator
    call is awaited.
    """

    def __init__(
        self,
        fetcher: OverlayFetcher,
        detector: FaceDetector,
        watermarks: WatermarkComposer,
        pool: ProcessingPool,
        opener: Callable[[bytes], ImageHandle] = PillowImage.open,
    ) -> None:
        self._fetcher = fetcher
        self._detector = detector
        self._watermarks = watermarks
        self._pool = pool
        self._opener = opener

    async def process(self, request: ImageRequest) -> str:
        """Apply the request's edits and return the result base64-encoded.

        Requests without edits return the original bytes untouched.
        """
        if not request.edits:
            return base64.b64encode(request.original_image).decode("ascii")

        image = await self.apply_edits(request.original_image, request.edits)
        if request.output_format is not None:
            image.to_format(request.output_format)
        encoded = await self._pool.run(image.to_buffer)
        return base64.b64encode(encoded).decode("ascii")

    async def apply_edits(self, original_image: bytes, edits: Mapping[str, Any]) -> ImageHandle:
        """Apply ``edits`` in order and return the working image handle."""
        plan = EditPlan.from_mapping(edits)
        state = _PipelineState(image=await self._pool.run(self._open, original_image), plan=plan)
        base = state.image.metadata()
        logger.debug("Applying %d edits to %sx%s image", len(plan), base.width, base.height)

        for edit in plan:
            if isinstance(edit, ResizeEdit):
                await self._pool.run(state.image.resize, edit.options)
                state.resized = True
            elif isinstance(edit, OverlayEdit):
                await self._overlay(state, edit)
            elif isinstance(edit, SmartCropEdit):
                await self._smart_crop(state, edit)
            elif isinstance(edit, WatermarkEdit):
                await self._watermark(state, edit)
            else:
                await self._passthrough(state, edit)
        return state.image

    # -- Edits --------------------------------------------------------------

    async def _overlay(self, state: _PipelineState, edit: OverlayEdit) -> None:
        target = state.target_metadata()
        overlay, size = await load_overlay(self._fetcher, self._pool, self._opener, edit.overlay, target)
        left, top = place(edit.placement, target, size)
        logger.debug("Compositing overlay %s at (%s, %s)", edit.overlay.key, left, top)
        await self._pool.run(state.image.composite, [CompositeLayer(input=overlay, left=left, top=top)])

    async def _smart_crop(self, state: _PipelineState, edit: SmartCropEdit) -> None:
        snapshot = await self._pool.run(state.image.to_buffer, DETECTION_FORMAT)
        box = await find_bounding_box(self._detector, snapshot, edit.face_index)
        rect = crop_area(box, state.image.metadata(), edit.padding)
        try:
            await self._pool.run(state.image.extract, rect)
        except ValueError as err:
            raise PaddingOutOfBoundsError() from err

    async def _watermark(self, state: _PipelineState, edit: WatermarkEdit) -> None:
        target = state.target_metadata()
        if not should_apply(target.width, edit.style):
            logger.debug("Skipping %s watermark on %spx wide image", edit.style, target.width)
            return
        brand_mark = None
        if edit.brand_mark is not None:
            brand_mark, _ = await load_overlay(self._fetcher, self._pool, self._opener, edit.brand_mark, target)
        layer = await self._pool.run(
            self._watermarks.layer, edit.name, edit.style, state.image.metadata(), brand_mark
        )
        await self._pool.run(state.image.composite, [layer])

    async def _passthrough(self, state: _PipelineState, edit: PassthroughEdit) -> None:
        if not state.image.supports(edit.operation):
            raise UnsupportedEditError(edit.operation)
        await self._pool.run(state.image.apply, edit.operation, edit.params)

    # -- Internal -----------------------------------------------------------

    def _open(self, data: bytes) -> ImageHandle:
        try:
            return self._opener(data)
        except Image.DecompressionBombError as err:
            raise ImageRequestError("TooLarge", f"The original image is too large to process: {err}", 413) from err
        except OSError as err:
            raise ImageRequestError("InvalidImage", f"The original image could not be decoded: {err}") from err
