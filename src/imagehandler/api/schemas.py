"""Pydantic request/response schemas for the ImageHandler API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

OutputFormat = Literal["jpeg", "jpg", "png", "webp", "tiff", "tif", "gif"]


class ProcessRequest(BaseModel):
    """An original image (inline or in S3) and the edits to apply to it."""

    model_config = ConfigDict(populate_by_name=True)

    image: str | None = Field(default=None, description="Base64-encoded original image")
    bucket: str | None = Field(default=None, description="S3 bucket of the original (defaults to the source bucket)")
    key: str | None = Field(default=None, description="S3 key of the original")
    edits: dict[str, Any] | None = Field(
        default=None,
        description="Ordered mapping of edit name to parameters, applied in the given order",
    )
    output_format: OutputFormat | None = Field(default=None, alias="outputFormat")


class ProcessResponse(BaseModel):
    """The processed image."""

    image: str = Field(description="Base64-encoded result")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    status: int
    code: str
    message: str
