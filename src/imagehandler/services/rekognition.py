"""Face detection backed by Amazon Rekognition ``DetectFaces``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from imagehandler.services.aws import collaborator_error, make_client
from imagehandler.services.face_detector import BoundingBox, DetectedFace

if TYPE_CHECKING:
    from imagehandler.config import Settings
    from imagehandler.services.pool import ProcessingPool

logger = logging.getLogger(__name__)


class RekognitionFaceDetector:
    """Detects faces with Rekognition and orders them by confidence."""

    def __init__(self, settings: Settings, pool: ProcessingPool, client: Any | None = None) -> None:
        self._client = client or make_client("rekognition", settings)
        self._pool = pool

    async def detect(self, image: bytes) -> list[DetectedFace]:
        try:
            response = await self._pool.run(self._client.detect_faces, Image={"Bytes": image})
        except (ClientError, BotoCoreError) as err:
            logger.warning("Rekognition detect_faces failed: %s", err)
            raise collaborator_error(err) from err

        faces = [_to_face(detail) for detail in response.get("FaceDetails", [])]
        faces.sort(key=lambda face: face.confidence, reverse=True)
        logger.debug("Rekognition found %d faces", len(faces))
        return faces


def _to_face(detail: dict[str, Any]) -> DetectedFace:
    box = detail["BoundingBox"]
    return DetectedFace(
        bounding_box=BoundingBox(
            left=float(box["Left"]),
            top=float(box["Top"]),
            width=float(box["Width"]),
            height=float(box["Height"]),
        ),
        confidence=float(detail.get("Confidence", 0.0)),
    )
