"""Face detection collaborator interface.

Implementations: Amazon Rekognition (see ``services/rekognition.py``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class BoundingBox:
    """Face bounding box as fractions (0.0-1.0) of the image width and height."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class DetectedFace:
    """A single detected face and the detector's confidence in it."""

    bounding_box: BoundingBox
    confidence: float


class FaceDetector(Protocol):
    """Protocol for face detection services."""

    async def detect(self, image: bytes) -> list[DetectedFace]:
        """Detect faces in an encoded image.

        Args:
            image: Encoded image bytes (JPEG or PNG).

        Returns:
            Detected faces ordered by descending confidence.

        Raises:
            CollaboratorError: If the detection service fails.
        """
        ...
