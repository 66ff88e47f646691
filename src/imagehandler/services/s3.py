"""Amazon S3 object store: source images and overlays."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from imagehandler.services.aws import collaborator_error, make_client

if TYPE_CHECKING:
    from imagehandler.config import Settings
    from imagehandler.services.pool import ProcessingPool

logger = logging.getLogger(__name__)


class S3ImageStore:
    """Reads objects from S3 through the processing pool."""

    def __init__(self, settings: Settings, pool: ProcessingPool, client: Any | None = None) -> None:
        self._client = client or make_client("s3", settings, endpoint_url=settings.s3_endpoint_url)
        self._pool = pool

    async def get(self, bucket: str, key: str) -> bytes:
        """Return the bytes of ``s3://bucket/key``.

        Raises:
            CollaboratorError: With S3's status and error code (e.g. 404 NoSuchKey).
        """
        try:
            response = await self._pool.run(self._client.get_object, Bucket=bucket, Key=key)
            body: bytes = await self._pool.run(response["Body"].read)
        except (ClientError, BotoCoreError) as err:
            logger.warning("S3 get_object failed for s3://%s/%s: %s", bucket, key, err)
            raise collaborator_error(err) from err
        logger.debug("Fetched s3://%s/%s (%d bytes)", bucket, key, len(body))
        return body
