"""Pillow implementation of the image-processing capability.

The edit pipeline only talks to :class:`ImageHandle`; :class:`PillowImage` is
the concrete handle used by the service. Operations mutate the handle in
place and are applied eagerly, in call order.
"""

from __future__ import annotations

import io
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

from PIL import Image, ImageChops, ImageFile, ImageFilter, ImageOps

from imagehandler.imaging.geometry import (
    CropRect,
    Fit,
    ImageMetadata,
    ResizeOptions,
    parse_colour,
    projected_metadata,
)

# Truncated or partially corrupt inputs decode best-effort instead of raising.
ImageFile.LOAD_TRUNCATED_IMAGES = True

OUTPUT_FORMATS: dict[str, str] = {
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "tiff": "TIFF",
    "tif": "TIFF",
    "gif": "GIF",
}


@dataclass(frozen=True)
class CompositeLayer:
    """One image to composite over the working image.

    ``raw`` describes uncompressed pixel input as ``(width, height, channels)``;
    otherwise ``input`` is an encoded image. ``tile`` repeats the input across
    the whole working image.
    """

    input: bytes
    left: int | None = None
    top: int | None = None
    blend: str = "over"
    tile: bool = False
    raw: tuple[int, int, int] | None = None


class ImageHandle(Protocol):
    """Operations the edit pipeline needs from an image library."""

    def metadata(self) -> ImageMetadata: ...

    def resize(self, options: ResizeOptions) -> None: ...

    def extract(self, rect: CropRect) -> None: ...

    def composite(self, layers: Sequence[CompositeLayer]) -> None: ...

    def supports(self, operation: str) -> bool: ...

    def apply(self, operation: str, params: Any) -> None: ...

    def to_format(self, fmt: str) -> None: ...

    def to_buffer(self, fmt: str | None = None) -> bytes: ...


class PillowImage:
    """Mutable working image backed by a Pillow ``Image``."""

    # Edit name -> method implementing it as a pass-through operation.
    OPERATIONS: ClassVar[dict[str, str]] = {
        "rotate": "rotate",
        "flip": "flip",
        "flop": "flop",
        "grayscale": "grayscale",
        "greyscale": "grayscale",
        "negate": "negate",
        "blur": "blur",
        "sharpen": "sharpen",
        "median": "median",
        "normalize": "normalize",
        "normalise": "normalize",
        "flatten": "flatten",
        "tint": "tint",
        "threshold": "threshold",
        "extract": "_extract_params",
        "resize": "_resize_params",
        "toFormat": "to_format",
    }

    def __init__(self, image: Image.Image, source_format: str | None, quality: int = 80) -> None:
        self._image = image
        self._source_format = source_format
        self._output_format: str | None = None
        self._quality = quality

    @classmethod
    def open(cls, data: bytes, quality: int = 80) -> PillowImage:
        """Decode ``data``; raises ``PIL.UnidentifiedImageError`` for non-images."""
        image = Image.open(io.BytesIO(data))
        source_format = "JPEG" if image.format == "MPO" else image.format
        image.load()
        return cls(image, source_format, quality=quality)

    # -- Capability ---------------------------------------------------------

    def metadata(self) -> ImageMetadata:
        return ImageMetadata(
            width=self._image.width,
            height=self._image.height,
            format=self._output_format or self._source_format,
        )

    def resize(self, options: ResizeOptions) -> None:
        target = projected_metadata(self.metadata(), options)
        size = (target.width, target.height)
        if size == self._image.size:
            return
        both = options.width is not None and options.height is not None
        if both and options.fit is Fit.COVER:
            self._image = ImageOps.fit(self._image, size, method=Image.Resampling.LANCZOS)
        elif both and options.fit is Fit.CONTAIN:
            self._image = ImageOps.pad(
                self._with_alpha(), size, method=Image.Resampling.LANCZOS, color=options.background
            )
        else:
            self._image = self._image.resize(size, Image.Resampling.LANCZOS)

    def extract(self, rect: CropRect) -> None:
        if not rect.within(self.metadata()):
            raise ValueError(f"extract_area: bad extract area {rect}")
        self._image = self._image.crop((rect.left, rect.top, rect.left + rect.width, rect.top + rect.height))

    def composite(self, layers: Sequence[CompositeLayer]) -> None:
        base = self._with_alpha()
        for layer in layers:
            source = self._decode_layer(layer)
            if layer.tile:
                source = _tile(source, base.size)
            offset = (layer.left or 0, layer.top or 0)
            if layer.blend == "over":
                overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
                overlay.paste(source, offset)
                base = Image.alpha_composite(base, overlay)
            elif layer.blend == "dest-in":
                mask = Image.new("L", base.size, 0)
                mask.paste(source.getchannel("A"), offset)
                base.putalpha(ImageChops.multiply(base.getchannel("A"), mask))
            else:
                raise ValueError(f"Unsupported blend mode: {layer.blend}")
        self._image = base

    def supports(self, operation: str) -> bool:
        return operation in self.OPERATIONS

    def apply(self, operation: str, params: Any) -> None:
        """Run a named pass-through operation; callers check :meth:`supports` first."""
        method: Callable[[Any], None] = getattr(self, self.OPERATIONS[operation])
        method(params)

    def to_format(self, fmt: Any) -> None:
        name = fmt.get("format") if isinstance(fmt, Mapping) else fmt
        try:
            self._output_format = OUTPUT_FORMATS[str(name).lower()]
        except KeyError:
            raise ValueError(f"Unsupported output format: {name}") from None

    def to_buffer(self, fmt: str | None = None) -> bytes:
        """Encode in ``fmt`` if given, else the requested output or source format."""
        fmt = OUTPUT_FORMATS[fmt.lower()] if fmt else self._encode_format()
        image = self._image
        save_args: dict[str, Any] = {}
        if fmt == "JPEG":
            if image.mode not in ("RGB", "L", "CMYK"):
                image = image.convert("RGB")
            save_args["quality"] = self._quality
        elif image.mode == "CMYK":
            image = image.convert("RGB")
        if fmt == "WEBP":
            save_args["quality"] = self._quality
        buffer = io.BytesIO()
        image.save(buffer, format=fmt, **save_args)
        return buffer.getvalue()

    # -- Pass-through operations -------------------------------------------

    def rotate(self, params: Any) -> None:
        """Rotate clockwise; no angle means auto-orient from EXIF."""
        background: tuple[int, int, int, int] = (0, 0, 0, 0)
        if isinstance(params, Mapping):
            background = parse_colour(params.get("background"), default=background)
            params = params.get("angle")
        if params is None or params is True:
            self._image = ImageOps.exif_transpose(self._image)
            return
        angle = float(params) % 360
        if angle == 0:
            return
        transposes = {
            90: Image.Transpose.ROTATE_270,
            180: Image.Transpose.ROTATE_180,
            270: Image.Transpose.ROTATE_90,
        }
        if angle in transposes:
            self._image = self._image.transpose(transposes[int(angle)])
        else:
            self._image = self._with_alpha().rotate(
                -angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=background
            )

    def flip(self, params: Any) -> None:
        if params is not False:
            self._image = ImageOps.flip(self._image)

    def flop(self, params: Any) -> None:
        if params is not False:
            self._image = ImageOps.mirror(self._image)

    def grayscale(self, params: Any) -> None:
        if params is not False:
            self._image = self._image.convert("LA" if self._has_alpha() else "L")

    def negate(self, params: Any) -> None:
        if params is not False:
            self._map_colour(ImageOps.invert)

    def blur(self, params: Any) -> None:
        if params is False:
            return
        if params is None or params is True:
            self._image = self._image.filter(ImageFilter.BoxBlur(1))
        else:
            self._image = self._image.filter(ImageFilter.GaussianBlur(radius=float(params)))

    def sharpen(self, params: Any) -> None:
        if params is False:
            return
        radius = 2.0 if params is None or params is True else float(params)
        self._image = self._image.filter(ImageFilter.UnsharpMask(radius=radius, percent=150, threshold=3))

    def median(self, params: Any) -> None:
        size = 3 if params is None or params is True else int(params)
        self._image = self._image.filter(ImageFilter.MedianFilter(size | 1))

    def normalize(self, params: Any) -> None:
        if params is not False:
            self._map_colour(ImageOps.autocontrast)

    def flatten(self, params: Any) -> None:
        if params is False or not self._has_alpha():
            return
        background = parse_colour(
            params.get("background") if isinstance(params, Mapping) else None,
            default=(0, 0, 0, 255),
        )
        rgba = self._with_alpha()
        canvas = Image.new("RGB", rgba.size, background[:3])
        canvas.paste(rgba, (0, 0), rgba)
        self._image = canvas

    def tint(self, params: Any) -> None:
        colour = parse_colour(params, default=(255, 255, 255, 255))
        alpha = self._image.getchannel("A") if self._has_alpha() else None
        tinted = ImageOps.colorize(self._image.convert("L"), black=(0, 0, 0), white=colour[:3])
        if alpha is not None:
            tinted.putalpha(alpha)
        self._image = tinted

    def threshold(self, params: Any) -> None:
        level = 128 if params is None or params is True else int(params)
        self._image = self._image.convert("L").point(lambda value: 255 if value >= level else 0)

    def _extract_params(self, params: Any) -> None:
        self.extract(CropRect.from_params(params))

    def _resize_params(self, params: Any) -> None:
        self.resize(ResizeOptions.from_params(params))

    # -- Internal -----------------------------------------------------------

    def _encode_format(self) -> str:
        return self._output_format or self._source_format or "PNG"

    def _has_alpha(self) -> bool:
        return self._image.mode in ("RGBA", "LA", "PA") or "transparency" in self._image.info

    def _with_alpha(self) -> Image.Image:
        return self._image if self._image.mode == "RGBA" else self._image.convert("RGBA")

    def _map_colour(self, func: Callable[[Image.Image], Image.Image]) -> None:
        """Apply ``func`` to the colour bands, leaving alpha untouched."""
        if self._has_alpha():
            rgba = self._with_alpha()
            result = func(rgba.convert("RGB"))
            result.putalpha(rgba.getchannel("A"))
        else:
            result = func(self._image if self._image.mode in ("RGB", "L") else self._image.convert("RGB"))
        self._image = result

    @staticmethod
    def _decode_layer(layer: CompositeLayer) -> Image.Image:
        if layer.raw is not None:
            width, height, channels = layer.raw
            mode = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}[channels]
            source = Image.frombytes(mode, (width, height), layer.input)
        else:
            source = Image.open(io.BytesIO(layer.input))
        return source.convert("RGBA")


def _tile(source: Image.Image, size: tuple[int, int]) -> Image.Image:
    if source.size == (1, 1):
        return source.resize(size, Image.Resampling.NEAREST)
    tiled = Image.new("RGBA", size, (0, 0, 0, 0))
    for left in range(0, size[0], source.width):
        for top in range(0, size[1], source.height):
            tiled.paste(source, (left, top))
    return tiled
