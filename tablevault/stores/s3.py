# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 object store backed by aiobotocore.

A client is created per call from a shared session, the same way the
rest of the package talks to S3.
"""

from typing import Any

import structlog
from aiobotocore.session import get_session

from tablevault.exceptions import ObjectStoreError

logger = structlog.get_logger()


class S3ObjectStore:
    """``ObjectStore`` for an S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        session: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = session or get_session()

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            async with self._client() as s3_client:
                await s3_client.put_object(
                    Bucket=self.bucket,
                    Key=path,
                    Body=data,
                    ContentType=content_type,
                )
            logger.debug("s3_object_written", bucket=self.bucket, key=path, size=len(data))
        except Exception as e:
            raise ObjectStoreError(
                f"Failed to upload object: {e}",
                details={"bucket": self.bucket, "key": path},
            )

    async def get(self, path: str) -> bytes:
        try:
            async with self._client() as s3_client:
                response = await s3_client.get_object(Bucket=self.bucket, Key=path)
                async with response["Body"] as stream:
                    return await stream.read()
        except Exception as e:
            raise ObjectStoreError(
                f"Failed to download object: {e}",
                details={"bucket": self.bucket, "key": path},
            )

    async def delete(self, path: str) -> None:
        # S3 delete_object succeeds for missing keys
        try:
            async with self._client() as s3_client:
                await s3_client.delete_object(Bucket=self.bucket, Key=path)
            logger.debug("s3_object_deleted", bucket=self.bucket, key=path)
        except Exception as e:
            raise ObjectStoreError(
                f"Failed to delete object: {e}",
                details={"bucket": self.bucket, "key": path},
            )

    async def ping(self) -> None:
        """Raise if the bucket is unreachable."""
        async with self._client() as s3_client:
            await s3_client.head_bucket(Bucket=self.bucket)

    async def close(self) -> None:
        return None
