"""Middleware: API key authentication."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from imagehandler.imaging.errors import ImageHandlerError

if TYPE_CHECKING:
    from imagehandler.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


class UnauthorizedError(ImageHandlerError):
    def __init__(self) -> None:
        super().__init__(status.HTTP_401_UNAUTHORIZED, "ImageHandler::Unauthorized", "Invalid or missing API key")


def _configured_key(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return settings.api_key


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject requests whose Bearer token does not match IMAGEHANDLER_API_KEY.

    Authentication is off while the key is unset.
    """
    api_key = _configured_key(request)
    if api_key is None:
        return

    presented = credentials.credentials.encode() if credentials is not None else b""
    if not secrets.compare_digest(presented, api_key.encode()):
        logger.warning("Rejected %s %s: bad or missing API key", request.method, request.url.path)
        raise UnauthorizedError()
