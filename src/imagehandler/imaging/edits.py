"""Edit directives: the parsed, ordered form of a request's ``edits`` object.

An :class:`EditPlan` is built once per request and never mutated. Known edit
names get their own variant; every other name becomes a
:class:`PassthroughEdit` that is checked against the image backend when it
runs.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from imagehandler.imaging.errors import InvalidEditError
from imagehandler.imaging.geometry import Fit, ResizeOptions

_ZERO_TO_HUNDRED = re.compile(r"^(100|[1-9]?[0-9])$")


class EditName(StrEnum):
    RESIZE = "resize"
    OVERLAY = "overlayWith"
    SMART_CROP = "smartCrop"
    WATERMARK = "TEPWatermark"


class WatermarkStyle(StrEnum):
    BANNER = "banner"
    CUTE = "cute"


def percent(value: Any) -> int | None:
    """Return ``value`` as an integer in [0, 100], or None when out of range.

    Accepts JSON integers (including integral floats such as ``50.0``) and
    numeric strings; anything else is treated as absent.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int | str) and _ZERO_TO_HUNDRED.match(str(value).strip()):
        return int(value)
    return None


@dataclass(frozen=True)
class OverlaySpec:
    """Storage location plus sizing and opacity of an overlay image."""

    bucket: str
    key: str
    width_ratio: int | None = None
    height_ratio: int | None = None
    alpha: int = 0

    @classmethod
    def from_params(cls, name: str, params: Mapping[str, Any]) -> OverlaySpec:
        bucket, key = params.get("bucket"), params.get("key")
        if not isinstance(bucket, str) or not isinstance(key, str) or not bucket or not key:
            raise InvalidEditError(name, "bucket and key are required")
        return cls(
            bucket=bucket,
            key=key,
            width_ratio=percent(params.get("wRatio")),
            height_ratio=percent(params.get("hRatio")),
            alpha=percent(params.get("alpha")) or 0,
        )


@dataclass(frozen=True)
class PlacementOptions:
    """Raw ``left``/``top`` placement strings; None leaves the axis at 0."""

    left: str | None = None
    top: str | None = None

    @classmethod
    def from_params(cls, params: Any) -> PlacementOptions:
        if not isinstance(params, Mapping):
            return cls()
        return cls(left=_placement(params.get("left")), top=_placement(params.get("top")))


@dataclass(frozen=True)
class ResizeEdit:
    options: ResizeOptions


@dataclass(frozen=True)
class OverlayEdit:
    overlay: OverlaySpec
    placement: PlacementOptions


@dataclass(frozen=True)
class SmartCropEdit:
    face_index: int = 0
    padding: float = 0.0


@dataclass(frozen=True)
class WatermarkEdit:
    name: str
    style: WatermarkStyle = WatermarkStyle.BANNER
    brand_mark: OverlaySpec | None = None


@dataclass(frozen=True)
class PassthroughEdit:
    operation: str
    params: Any


Edit = ResizeEdit | OverlayEdit | SmartCropEdit | WatermarkEdit | PassthroughEdit

DEFAULT_RESIZE = ResizeEdit(ResizeOptions(fit=Fit.INSIDE))


@dataclass(frozen=True)
class EditPlan:
    """Ordered, immutable sequence of edits for one request."""

    edits: tuple[Edit, ...]

    @classmethod
    def from_mapping(cls, edits: Mapping[str, Any]) -> EditPlan:
        """Parse ``edits`` in iteration order.

        A fit-inside resize is prepended when the caller did not ask for one,
        so placement math always has a resize to project through.
        """
        parsed = [parse_edit(name, params) for name, params in edits.items()]
        if EditName.RESIZE not in edits:
            parsed.insert(0, DEFAULT_RESIZE)
        return cls(tuple(parsed))

    @property
    def resize(self) -> ResizeEdit:
        return next(edit for edit in self.edits if isinstance(edit, ResizeEdit))

    def __iter__(self) -> Iterator[Edit]:
        return iter(self.edits)

    def __len__(self) -> int:
        return len(self.edits)


def parse_edit(name: str, params: Any) -> Edit:
    """Turn one ``name: params`` entry into its edit variant."""
    if name == EditName.RESIZE:
        return ResizeEdit(ResizeOptions.from_params(params))
    if name == EditName.OVERLAY:
        params = _require_mapping(name, params)
        return OverlayEdit(OverlaySpec.from_params(name, params), PlacementOptions.from_params(params.get("options")))
    if name == EditName.SMART_CROP:
        return _parse_smart_crop(params)
    if name == EditName.WATERMARK:
        return _parse_watermark(_require_mapping(name, params))
    return PassthroughEdit(operation=name, params=params)


def _parse_smart_crop(params: Any) -> SmartCropEdit:
    if params is None or params is True:
        return SmartCropEdit()
    params = _require_mapping(EditName.SMART_CROP, params)
    face_index = params.get("faceIndex", 0)
    if isinstance(face_index, bool) or not isinstance(face_index, int):
        raise InvalidEditError(EditName.SMART_CROP, "faceIndex must be an integer")
    try:
        padding = float(params.get("padding", 0))
    except (TypeError, ValueError):
        raise InvalidEditError(EditName.SMART_CROP, "padding must be a number") from None
    return SmartCropEdit(face_index=face_index, padding=padding)


def _parse_watermark(params: Mapping[str, Any]) -> WatermarkEdit:
    options = params.get("options") or {}
    if not isinstance(options, Mapping):
        raise InvalidEditError(EditName.WATERMARK, "options must be an object")
    style = WatermarkStyle.CUTE if options.get("style") == WatermarkStyle.CUTE else WatermarkStyle.BANNER
    brand_mark = None
    if params.get("bucket") is not None or params.get("key") is not None:
        brand_mark = OverlaySpec.from_params(EditName.WATERMARK, params)
    return WatermarkEdit(name=str(options.get("name", "")), style=style, brand_mark=brand_mark)


def _placement(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    return str(value)


def _require_mapping(name: str, params: Any) -> Mapping[str, Any]:
    if not isinstance(params, Mapping):
        raise InvalidEditError(name, "expected an object")
    return params
