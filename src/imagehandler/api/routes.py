"""API route definitions."""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, status

from imagehandler.api.middleware import verify_api_key
from imagehandler.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ProcessRequest,
    ProcessResponse,
)
from imagehandler.imaging.errors import ImageRequestError
from imagehandler.imaging.handler import ImageRequest

if TYPE_CHECKING:
    from imagehandler.config import Settings
    from imagehandler.imaging.handler import ImageHandler
    from imagehandler.services.pool import ProcessingPool
    from imagehandler.services.s3 import S3ImageStore

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_processing_pool(request: Request) -> ProcessingPool:
    pool: ProcessingPool = request.app.state.processing_pool
    return pool


def _get_image_handler(request: Request) -> ImageHandler:
    handler: ImageHandler = request.app.state.image_handler
    return handler


def _get_image_store(request: Request) -> S3ImageStore:
    store: S3ImageStore = request.app.state.image_store
    return store


async def _load_original(body: ProcessRequest, settings: Settings, store: S3ImageStore) -> bytes:
    """Return the original image bytes, inline or from S3."""
    if body.image is not None:
        try:
            data = base64.b64decode(body.image, validate=True)
        except binascii.Error as err:
            raise ImageRequestError("InvalidImage", f"The image field is not valid base64: {err}") from err
    else:
        bucket = body.bucket or settings.source_bucket
        if not bucket or not body.key:
            raise ImageRequestError("MissingSource", "Provide either an inline image or an S3 bucket and key.")
        data = await store.get(bucket, body.key)

    if len(data) > settings.max_file_size:
        raise ImageRequestError(
            "TooLarge",
            f"The original image is {len(data)} bytes; the limit is {settings.max_file_size}.",
            status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )
    return data


@router.post(
    "/images/process",
    response_model=ProcessResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Apply edits to an image",
)
async def process_image(body: ProcessRequest, request: Request) -> ProcessResponse:
    """Apply the requested edits in order and return the encoded result."""
    settings = _get_settings(request)
    original = await _load_original(body, settings, _get_image_store(request))
    handler = _get_image_handler(request)
    encoded = await handler.process(
        ImageRequest(original_image=original, edits=body.edits, output_format=body.output_format)
    )
    return ProcessResponse(image=encoded)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_processing_pool(request)
    return HealthResponse(
        status="ok",
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
