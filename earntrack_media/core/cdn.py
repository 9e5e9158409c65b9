"""CloudFront invalidation client.

Purges cached copies of deleted objects. Without a distribution id the
client is inert, which is the normal setup for local development.
"""

import asyncio
import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from earntrack_media.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# CloudFront limit on paths in one invalidation batch
MAX_INVALIDATION_PATHS = 3000


def paths_for_keys(keys: list[str]) -> list[str]:
    """CloudFront paths for object keys (``/`` prefixed, de-duplicated, in order)."""
    seen: dict[str, None] = {}
    for key in keys:
        seen.setdefault("/" + key.lstrip("/"), None)
    return list(seen)


class CDNInvalidationClient:
    """Issues CloudFront invalidation batches."""

    def __init__(
        self,
        distribution_id: Optional[str],
        region: str = "us-east-1",
        access_key: str = "",
        secret_key: str = "",
        client=None,
    ):
        self.distribution_id = distribution_id
        self.region = region
        self.access_key = access_key
        self.secret_key = secret_key
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.distribution_id)

    def _get_client(self):
        if self._client is None:
            client_kwargs = {"service_name": "cloudfront", "region_name": self.region}
            if self.access_key and self.secret_key:
                client_kwargs["aws_access_key_id"] = self.access_key
                client_kwargs["aws_secret_access_key"] = self.secret_key
            self._client = boto3.client(**client_kwargs)
        return self._client

    def _create_invalidation(self, paths: list[str]) -> str:
        response = self._get_client().create_invalidation(
            DistributionId=self.distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": paths},
                "CallerReference": f"earntrack-{uuid.uuid4().hex}",
            },
        )
        return response["Invalidation"]["Id"]

    async def invalidate(self, paths: list[str]) -> Optional[str]:
        """Invalidate the given paths, split into batches CloudFront accepts.

        Args:
            paths: CloudFront paths, e.g. ``/videos/u/1_a.mp4`` or ``/hls/<id>/*``

        Returns:
            Id of the last invalidation created, or None when nothing was sent

        Raises:
            StorageError: If CloudFront rejects a batch
        """
        if not self.enabled or not paths:
            logger.debug("CDN invalidation skipped", extra={"paths": len(paths)})
            return None

        invalidation_id = None
        for start in range(0, len(paths), MAX_INVALIDATION_PATHS):
            batch = paths[start:start + MAX_INVALIDATION_PATHS]
            try:
                invalidation_id = await asyncio.to_thread(self._create_invalidation, batch)
            except (BotoCoreError, ClientError) as e:
                raise StorageError(f"CDN invalidation failed: {e}") from e

            logger.info(
                "CDN invalidation created",
                extra={"invalidation_id": invalidation_id, "paths": len(batch)},
            )
        return invalidation_id
