"""Face-driven crop rectangles."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from imagehandler.imaging.errors import CollaboratorError, FaceIndexOutOfRangeError
from imagehandler.imaging.geometry import CropRect, ImageMetadata

if TYPE_CHECKING:
    from imagehandler.services.face_detector import BoundingBox, FaceDetector

logger = logging.getLogger(__name__)


def crop_area(box: BoundingBox, metadata: ImageMetadata, padding: float = 0.0) -> CropRect:
    """Scale a normalized bounding box to pixels and grow it by ``padding`` on every side."""
    return CropRect(
        left=math.floor(box.left * metadata.width - padding),
        top=math.floor(box.top * metadata.height - padding),
        width=math.floor(box.width * metadata.width + padding * 2),
        height=math.floor(box.height * metadata.height + padding * 2),
    )


async def find_bounding_box(detector: FaceDetector, image: bytes, face_index: int = 0) -> BoundingBox:
    """Return the bounding box of the ``face_index``-th most confident face.

    A pool TimeoutError from the detector propagates unchanged.
    """
    try:
        faces = await detector.detect(image)
    except TimeoutError:
        raise
    except Exception as err:
        logger.warning("Face detection failed: %s", err)
        raise CollaboratorError.from_exception(err) from err

    if not 0 <= face_index < len(faces):
        raise FaceIndexOutOfRangeError(face_index, len(faces))
    return faces[face_index].bounding_box
