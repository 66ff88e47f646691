"""Error taxonomy for the edit pipeline.

Every error carries an HTTP-style status, a namespaced code and a human
readable message so the API layer can return it without further mapping.
"""

from __future__ import annotations

from typing import Any


class ImageHandlerError(Exception):
    """Base class for errors raised while processing an image request."""

    def __init__(self, status: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body returned to callers."""
        return {"status": self.status, "code": self.code, "message": self.message}


class PaddingOutOfBoundsError(ImageHandlerError):
    def __init__(self) -> None:
        super().__init__(
            400,
            "SmartCrop::PaddingOutOfBounds",
            "The padding value you provided exceeds the boundaries of the original image. "
            "Please try choosing a smaller value or applying padding via a resize or extend edit.",
        )


class FaceIndexOutOfRangeError(ImageHandlerError):
    def __init__(self, face_index: int, face_count: int) -> None:
        super().__init__(
            400,
            "SmartCrop::FaceIndexOutOfRange",
            f"You have provided a FaceIndex value ({face_index}) that exceeds the length of the "
            f"zero-based detected faces array ({face_count} detected). "
            "Please specify a value that is in-range.",
        )


class UnsupportedEditError(ImageHandlerError):
    def __init__(self, name: str) -> None:
        super().__init__(400, "ImageEdits::UnsupportedEdit", f"Unsupported edit operation: {name}")


class InvalidEditError(ImageHandlerError):
    def __init__(self, name: str, detail: str) -> None:
        super().__init__(400, "ImageEdits::InvalidParameter", f"Invalid parameters for {name}: {detail}")


class ImageRequestError(ImageHandlerError):
    """Raised when the incoming request cannot supply an original image."""

    def __init__(self, code: str, message: str, status: int = 400) -> None:
        super().__init__(status, f"ImageRequest::{code}", message)


class CollaboratorError(ImageHandlerError):
    """Failure reported by an external collaborator (storage, face detection).

    The collaborator's own status, code and message are propagated verbatim;
    status defaults to 500 when the collaborator does not report one.
    """

    def __init__(self, status: int | None, code: str | None, message: str) -> None:
        super().__init__(status or 500, code or "InternalError", message)

    @classmethod
    def from_exception(cls, err: Exception) -> CollaboratorError:
        """Wrap an arbitrary exception, keeping status/code when it carries them."""
        if isinstance(err, CollaboratorError):
            return err
        status = getattr(err, "status", None)
        code = getattr(err, "code", None)
        return cls(
            status if isinstance(status, int) else None,
            code if isinstance(code, str) else type(err).__name__,
            str(err),
        )
