"""FastAPI application entry point."""

from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from PIL import Image

from imagehandler.api.routes import router
from imagehandler.config import Settings, get_settings
from imagehandler.imaging.backend import PillowImage
from imagehandler.imaging.errors import ImageHandlerError
from imagehandler.imaging.handler import ImageHandler
from imagehandler.imaging.watermark import WatermarkComposer, WatermarkTemplates
from imagehandler.services.pool import ProcessingPool
from imagehandler.services.rekognition import RekognitionFaceDetector
from imagehandler.services.s3 import S3ImageStore

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Create the request-independent collaborators and attach them to ``app.state``."""
    Image.MAX_IMAGE_PIXELS = settings.max_image_pixels

    pool = ProcessingPool(settings)
    store = S3ImageStore(settings, pool)
    app.state.settings = settings
    app.state.processing_pool = pool
    app.state.image_store = store
    app.state.image_handler = ImageHandler(
        fetcher=store,
        detector=RekognitionFaceDetector(settings, pool),
        watermarks=WatermarkComposer(WatermarkTemplates.load()),
        pool=pool,
        opener=functools.partial(PillowImage.open, quality=settings.jpeg_quality),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ImageHandler (region=%s, source_bucket=%s, max_concurrent=%s)",
        settings.aws_region,
        settings.source_bucket,
        settings.max_concurrent,
    )

    init_state(app, settings)

    logger.info("ImageHandler ready")
    yield

    logger.info("Shutting down ImageHandler")
    app.state.processing_pool.shutdown()
    logger.info("ImageHandler shutdown complete")


async def _image_handler_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ImageHandlerError)
    logger.info("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def _pool_timeout(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": status.HTTP_503_SERVICE_UNAVAILABLE,
            "code": "ImageHandler::Busy",
            "message": "Too many concurrent requests, try again shortly.",
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ImageHandler",
        description="Applies ordered image edits (resize, overlay, smart crop, watermark) to images",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(ImageHandlerError, _image_handler_error)
    application.add_exception_handler(TimeoutError, _pool_timeout)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("imagehandler.main:app", host=settings.host, port=settings.port)
