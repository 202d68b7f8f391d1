import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import aioboto3
from botocore.client import Config
from botocore.exceptions import ClientError
from types_aiobotocore_s3.client import S3Client as AsyncS3Client

from .settings import S3Settings, get_s3_settings


class AsyncS3:
    """
    Asynchronous S3 client with enforced encryption in transit (HTTPS/TLS).

    This service ensures:
    - Custom endpoints are validated to use HTTPS protocol
    - SSL/TLS is enforced for all connections
    - SSL certificates are verified

    Use this service for all async S3 operations of the worker.
    """

    def __init__(
        self,
        max_concurrency: int = 16,
        custom_config: Config | None = None,
        settings: S3Settings | None = None,
        bucket: str | None = None,
    ):
        """
        Initialize AsyncS3 client.

        Args:
            max_concurrency: Maximum number of concurrent S3 operations
            custom_config: Optional custom boto3 Config for specialized use cases
            settings: Optional S3Settings instance, read from the environment otherwise
            bucket: Optional default bucket name
        """
        if settings is not None:
            self._settings = settings
        else:
            self._settings = get_s3_settings()

        # None credentials fall back to the default AWS credential chain
        self.session = aioboto3.Session(
            aws_access_key_id=self._settings.S3_KEY,
            aws_secret_access_key=self._settings.S3_SECRET,
            region_name=self._settings.S3_REGION,
        )

        self.bucket = bucket or self._settings.S3_BUCKET

        self.max_concurrency = max_concurrency
        self._sem = asyncio.Semaphore(max_concurrency)
        self.logger = logging.getLogger("AsyncS3")

        if custom_config is not None:
            self._boto_config = custom_config
        else:
            self._boto_config = Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 3, "mode": "standard"},
                max_pool_connections=max_concurrency,
            )

        # Persistent client for reuse across requests (created on first use)
        self._persistent_client: AsyncS3Client | None = None
        self._persistent_client_cm: Any | None = None
        self._client_lock = asyncio.Lock()

    def _client_kwargs(self) -> dict[str, Any]:
        return {
            "region_name": self._settings.S3_REGION,
            "endpoint_url": self._settings.S3_ENDPOINT,
            "use_ssl": True,  # Explicitly enforce SSL/TLS
            "verify": True,  # Require SSL certificate verification
            "config": self._boto_config,
        }

    async def _get_persistent_client(self) -> AsyncS3Client:
        """
        Get or create a persistent S3 client that's reused across requests.

        A flush pass uploads one object per partition group, so reusing the
        connection avoids a TLS handshake per group.
        """
        if self._persistent_client is None:
            async with self._client_lock:
                # Double-check after acquiring lock
                if self._persistent_client is None:
                    self._persistent_client_cm = self.session.client(
                        "s3", **self._client_kwargs()
                    )
                    self._persistent_client = (
                        await self._persistent_client_cm.__aenter__()
                    )
        assert self._persistent_client is not None
        return self._persistent_client

    @asynccontextmanager
    async def _client(self) -> AsyncGenerator[AsyncS3Client, None]:
        """Create a temporary S3 client (use _get_persistent_client for repeated calls)."""
        async with self.session.client("s3", **self._client_kwargs()) as client:
            yield client

    async def get_file(self, path: str) -> bytes | None:
        async with self._sem, self._client() as client:
            try:
                response = await client.get_object(Bucket=self.bucket, Key=path)
                async with response["Body"] as stream:
                    return await stream.read()
            except ClientError as e:
                if e.response["Error"]["Code"] == "NoSuchKey":
                    return None
                raise

    async def upload_file(
        self,
        path: str,
        file: bytes,
        content_type: str = "application/octet-stream",
        bucket: str | None = None,
    ) -> None:
        """
        Upload a file with the persistent client.

        PutObject replaces any object already stored under ``path``.
        """
        async with self._sem:
            client = await self._get_persistent_client()
            await client.put_object(
                Bucket=bucket or self.bucket,
                Key=path,
                Body=file,
                ContentType=content_type,
            )

    async def close(self) -> None:
        """
        Close the persistent client connection.

        Call this during application shutdown to properly clean up resources.
        """
        if self._persistent_client_cm is not None:
            async with self._client_lock:
                if self._persistent_client_cm is not None:
                    # Call __aexit__ on the context manager, not the client
                    await self._persistent_client_cm.__aexit__(None, None, None)
                    self._persistent_client = None
                    self._persistent_client_cm = None
