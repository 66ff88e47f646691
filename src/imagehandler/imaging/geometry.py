"""Image dimensions, crop rectangles and resize projection."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from imagehandler.imaging.errors import InvalidEditError


class Fit(StrEnum):
    COVER = "cover"
    CONTAIN = "contain"
    FILL = "fill"
    INSIDE = "inside"
    OUTSIDE = "outside"


@dataclass(frozen=True)
class ImageMetadata:
    """Pixel dimensions of an image, plus its source format when known."""

    width: int
    height: int
    format: str | None = None


@dataclass(frozen=True)
class CropRect:
    """Absolute crop rectangle in pixels."""

    left: int
    top: int
    width: int
    height: int

    @classmethod
    def from_params(cls, params: Any) -> CropRect:
        if not isinstance(params, Mapping):
            raise InvalidEditError("extract", "expected an object with left, top, width and height")
        try:
            return cls(**{name: int(params[name]) for name in ("left", "top", "width", "height")})
        except (KeyError, TypeError, ValueError) as err:
            raise InvalidEditError("extract", str(err)) from None

    def within(self, metadata: ImageMetadata) -> bool:
        return (
            self.left >= 0
            and self.top >= 0
            and self.width > 0
            and self.height > 0
            and self.left + self.width <= metadata.width
            and self.top + self.height <= metadata.height
        )


@dataclass(frozen=True)
class ResizeOptions:
    """Parsed ``resize`` edit parameters.

    Either dimension may be omitted; the missing one then follows the source
    aspect ratio regardless of ``fit``.
    """

    width: int | None = None
    height: int | None = None
    fit: Fit = Fit.COVER
    background: tuple[int, int, int, int] = (0, 0, 0, 0)
    without_enlargement: bool = False

    @classmethod
    def from_params(cls, params: Any) -> ResizeOptions:
        """Build options from the wire form: a bare width or a mapping."""
        if params is None or params is True:
            return cls()
        if isinstance(params, int) and not isinstance(params, bool):
            return cls(width=_dimension(params, "width"))
        if not isinstance(params, Mapping):
            raise InvalidEditError("resize", "expected an object or a width")

        fit_value = params.get("fit", Fit.COVER.value)
        try:
            fit = Fit(fit_value)
        except ValueError:
            raise InvalidEditError("resize", f"unknown fit '{fit_value}'") from None

        return cls(
            width=_dimension(params.get("width"), "width"),
            height=_dimension(params.get("height"), "height"),
            fit=fit,
            background=parse_colour(params.get("background"), default=(0, 0, 0, 0)),
            without_enlargement=bool(params.get("withoutEnlargement", False)),
        )


def projected_metadata(metadata: ImageMetadata, resize: ResizeOptions | None) -> ImageMetadata:
    """Return the dimensions ``metadata`` would have after applying ``resize``.

    This is the only place resize geometry is computed; the Pillow backend
    resizes to exactly these dimensions.
    """
    if resize is None or (resize.width is None and resize.height is None):
        return metadata

    src_w, src_h = metadata.width, metadata.height
    if resize.width is None:
        assert resize.height is not None
        width, height = max(1, round(src_w * resize.height / src_h)), resize.height
    elif resize.height is None:
        width, height = resize.width, max(1, round(src_h * resize.width / src_w))
    elif resize.fit in (Fit.INSIDE, Fit.OUTSIDE):
        pick = min if resize.fit is Fit.INSIDE else max
        scale = pick(resize.width / src_w, resize.height / src_h)
        width, height = max(1, round(src_w * scale)), max(1, round(src_h * scale))
    else:
        width, height = resize.width, resize.height

    if resize.without_enlargement and (width > src_w or height > src_h):
        return metadata
    return ImageMetadata(width=width, height=height, format=metadata.format)


def parse_colour(value: Any, default: tuple[int, int, int, int]) -> tuple[int, int, int, int]:
    """Parse an ``{r, g, b, alpha}`` object (alpha 0.0-1.0) into an RGBA tuple."""
    if value is None:
        return default
    if not isinstance(value, Mapping):
        raise InvalidEditError("colour", "expected an object with r, g, b and optional alpha")
    try:
        r, g, b = (int(value.get(channel, 0)) for channel in ("r", "g", "b"))
        alpha = int(round(float(value.get("alpha", 1)) * 255))
    except (TypeError, ValueError):
        raise InvalidEditError("colour", f"non-numeric channel in {dict(value)}") from None
    return (_clamp(r), _clamp(g), _clamp(b), _clamp(alpha))


def _clamp(channel: int) -> int:
    return max(0, min(255, channel))


def _dimension(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidEditError("resize", f"{name} must be a positive integer")
    return value
