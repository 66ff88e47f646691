"""Brand watermark: fixed SVG templates rendered with caller text.

Templates and the default brand mark live in the package ``assets/``
directory and are loaded once at startup. The SVG is rasterised with
CairoSVG and composited at the centre of the working image.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from string import Template
from xml.sax.saxutils import escape

from PIL import Image

from imagehandler.imaging.backend import CompositeLayer
from imagehandler.imaging.edits import WatermarkStyle
from imagehandler.imaging.geometry import ImageMetadata

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"

# Minimum base widths (exclusive) at which each template fits.
BANNER_MIN_WIDTH = 340
CUTE_MIN_WIDTH = 150

_XML_ATTRIBUTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def should_apply(width: int, style: WatermarkStyle) -> bool:
    """Whether a watermark of ``style`` fits an image ``width`` pixels wide."""
    return width > BANNER_MIN_WIDTH or (width > CUTE_MIN_WIDTH and style is WatermarkStyle.CUTE)


@dataclass(frozen=True)
class WatermarkTemplates:
    """The two SVG layouts plus the default brand mark (PNG bytes)."""

    banner: Template
    cute: Template
    brand_mark: bytes

    @classmethod
    def load(cls, directory: Path = ASSETS_DIR) -> WatermarkTemplates:
        templates = cls(
            banner=Template((directory / "watermark_banner.svg").read_text(encoding="utf-8")),
            cute=Template((directory / "watermark_cute.svg").read_text(encoding="utf-8")),
            brand_mark=(directory / "brand_mark.png").read_bytes(),
        )
        logger.info("Loaded watermark templates from %s", directory)
        return templates

    def for_style(self, style: WatermarkStyle) -> Template:
        return self.cute if style is WatermarkStyle.CUTE else self.banner


class WatermarkComposer:
    """Builds the watermark composite layer for a given image."""

    def __init__(self, templates: WatermarkTemplates) -> None:
        self._templates = templates

    def render_svg(self, name: str, style: WatermarkStyle, brand_mark: bytes | None = None) -> str:
        """Fill the template; ``name`` is XML-escaped before interpolation."""
        mark = base64.b64encode(brand_mark or self._templates.brand_mark).decode("ascii")
        return self._templates.for_style(style).substitute(
            name=escape(name, _XML_ATTRIBUTE_ENTITIES),
            mark=f"data:image/png;base64,{mark}",
        )

    def layer(
        self,
        name: str,
        style: WatermarkStyle,
        base: ImageMetadata,
        brand_mark: bytes | None = None,
    ) -> CompositeLayer:
        """Return the rasterised watermark layer centred on an image of size ``base``."""
        png = rasterize(self.render_svg(name, style, brand_mark))
        with Image.open(io.BytesIO(png)) as rendered:
            width, height = rendered.size
        return CompositeLayer(input=png, left=(base.width - width) // 2, top=(base.height - height) // 2)


def rasterize(svg: str) -> bytes:
    """Render SVG markup to PNG bytes."""
    # Imported lazily: cairosvg needs the native cairo library at import time.
    import cairosvg

    png: bytes = cairosvg.svg2png(bytestring=svg.encode("utf-8"))
    return png
