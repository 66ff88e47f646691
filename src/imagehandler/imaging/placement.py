"""Overlay sizing, opacity and placement."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from imagehandler.imaging.backend import CompositeLayer
from imagehandler.imaging.errors import CollaboratorError, InvalidEditError
from imagehandler.imaging.geometry import Fit, ImageMetadata, ResizeOptions

if TYPE_CHECKING:
    from imagehandler.imaging.backend import ImageHandle
    from imagehandler.imaging.edits import OverlaySpec, PlacementOptions
    from imagehandler.services.pool import ProcessingPool

logger = logging.getLogger(__name__)

PERCENT_MARKER = "p"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class OverlayFetcher(Protocol):
    """Retrieves raw overlay bytes from storage."""

    async def get(self, bucket: str, key: str) -> bytes:
        """Return the object's bytes; raises CollaboratorError on failure."""
        ...


def resolve_position(value: str, base: int, overlay: int) -> int:
    """Convert a placement string into an absolute pixel offset.

    ``"<n>p"`` is a percentage of ``base``; a plain ``"<n>"`` is pixels.
    Negative values are measured from the far edge, with the overlay's own
    extent subtracted so its far edge lands on that point.
    """
    is_percent = value.endswith(PERCENT_MARKER)
    number = _leading_int(value[:-1] if is_percent else value)

    position: float
    if is_percent:
        position = base + base * number / 100 - overlay if number < 0 else base * number / 100
    else:
        position = base + number - overlay if number < 0 else number
    return int(position)


def place(
    placement: PlacementOptions, base: ImageMetadata, overlay: ImageMetadata
) -> tuple[int | None, int | None]:
    """Resolve both axes independently; an absent axis stays None."""
    left = resolve_position(placement.left, base.width, overlay.width) if placement.left is not None else None
    top = resolve_position(placement.top, base.height, overlay.height) if placement.top is not None else None
    return left, top


def overlay_resize_options(spec: OverlaySpec, base: ImageMetadata) -> ResizeOptions:
    """Fit-inside box limited to the requested share of the base image."""
    width = max(1, int(base.width * spec.width_ratio / 100)) if spec.width_ratio is not None else None
    height = max(1, int(base.height * spec.height_ratio / 100)) if spec.height_ratio is not None else None
    return ResizeOptions(width=width, height=height, fit=Fit.INSIDE)


def opacity_layer(alpha: int) -> CompositeLayer:
    """1x1 tile that scales the alpha channel by ``1 - alpha/100`` under dest-in."""
    intensity = int(255 * (1 - alpha / 100))
    return CompositeLayer(
        input=bytes([255, 255, 255, intensity]),
        raw=(1, 1, 4),
        tile=True,
        blend="dest-in",
    )


def prepare_overlay(
    opener: Callable[[bytes], ImageHandle],
    data: bytes,
    spec: OverlaySpec,
    base: ImageMetadata,
) -> tuple[bytes, ImageMetadata]:
    """Size raw overlay bytes against ``base`` and apply their opacity.

    Returns PNG bytes, so transparency survives into the composite, together
    with the overlay's final dimensions.
    """
    overlay = opener(data)
    overlay.resize(overlay_resize_options(spec, base))
    overlay.composite([opacity_layer(spec.alpha)])
    overlay.to_format("png")
    return overlay.to_buffer(), overlay.metadata()


async def load_overlay(
    fetcher: OverlayFetcher,
    pool: ProcessingPool,
    opener: Callable[[bytes], ImageHandle],
    spec: OverlaySpec,
    base: ImageMetadata,
) -> tuple[bytes, ImageMetadata]:
    """Fetch an overlay and prepare it on the processing pool.

    Raises:
        TimeoutError: If the pool has no free slot; left for the API to answer with 503.
        CollaboratorError: For every other fetch or decode failure.
    """
    try:
        data = await fetcher.get(spec.bucket, spec.key)
        return await pool.run(prepare_overlay, opener, data, spec, base)
    except TimeoutError:
        raise
    except Exception as err:
        logger.warning("Failed to load overlay s3://%s/%s: %s", spec.bucket, spec.key, err)
        raise CollaboratorError.from_exception(err) from err


def _leading_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise InvalidEditError("overlayWith", f"'{text}' is not a pixel or percentage offset")
    return int(match.group(1))
