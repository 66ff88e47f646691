"""Shared boto3 client construction and error translation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from imagehandler.imaging.errors import CollaboratorError

if TYPE_CHECKING:
    from imagehandler.config import Settings

# Retries belong to the caller; the SDK makes a single attempt.
_CLIENT_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def make_client(service: str, settings: Settings, endpoint_url: str | None = None) -> Any:
    """Create a boto3 client for ``service`` in the configured region."""
    return boto3.client(
        service,
        region_name=settings.aws_region,
        endpoint_url=endpoint_url,
        config=_CLIENT_CONFIG,
    )


def collaborator_error(err: Exception) -> CollaboratorError:
    """Translate a botocore failure into a CollaboratorError with the service's status and code."""
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return CollaboratorError(status, error.get("Code"), error.get("Message") or str(err))
    if isinstance(err, BotoCoreError):
        return CollaboratorError(500, type(err).__name__, str(err))
    return CollaboratorError.from_exception(err)
