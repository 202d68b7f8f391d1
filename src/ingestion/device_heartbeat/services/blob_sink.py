"""
Object store side of a flush pass.

The flush coordinator only needs ``put(key, body) -> bool``; overwriting an
existing key is a normal success so that a group retried after a crash can be
uploaded again under the same key.
"""

import logging
from typing import Protocol

from botocore.exceptions import BotoCoreError, ClientError

from core.s3.async_s3 import AsyncS3

logger = logging.getLogger("blob-sink")

PARQUET_CONTENT_TYPE = "application/vnd.apache.parquet"


class BlobSink(Protocol):
    async def put(self, key: str, body: bytes) -> bool: ...


class S3BlobSink:
    def __init__(self, s3: AsyncS3 | None = None):
        self._s3 = s3 or AsyncS3()

    @property
    def bucket(self) -> str:
        return self._s3.bucket

    async def put(self, key: str, body: bytes) -> bool:
        try:
            await self._s3.upload_file(
                path=key, file=body, content_type=PARQUET_CONTENT_TYPE
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Upload of s3://{self.bucket}/{key} failed: {e!s}")
            return False

        logger.info(f"Uploaded s3://{self.bucket}/{key} ({len(body)} bytes)")
        return True

    async def get(self, key: str) -> bytes | None:
        return await self._s3.get_file(key)

    async def close(self) -> None:
        await self._s3.close()
