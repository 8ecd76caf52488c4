"""
S3-compatible object source backed by aiobotocore.

Works against AWS S3 and any S3-compatible endpoint (Cloudflare R2, MinIO).
One client is opened at startup and shared by every request; it holds no
per-request state.

Invariants:
    - Listings always pass the delimiter, so one call covers one folder level
    - With pagination enabled every continuation token is followed
    - Object bodies are streamed in chunks, never read whole

How to change safely:
    - Keep botocore errors wrapped in ListingError/FetchError
    - Test against MinIO before changing listing parameters
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from .base import (
    FetchError,
    ListingError,
    ListingPage,
    ObjectContent,
    StorageConnectionError,
)

logger = logging.getLogger(__name__)

_BODY_ERRORS = (BotoCoreError, ClientError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


class S3ObjectSource:
    """ObjectSource over an S3 bucket.

    Attributes:
        s3_config: S3Config instance
        chunk_size: Size of the chunks read from object bodies

    Example:
        >>> source = S3ObjectSource(config.s3)
        >>> await source.connect()
        >>> content = await source.get_content("photosession/u1/f1/a.jpg")
    """

    def __init__(self, s3_config: Any, chunk_size: int = 64 * 1024, client: Any = None) -> None:
        """Initialize the S3 object source.

        Args:
            s3_config: S3Config instance
            chunk_size: Body chunk size in bytes
            client: Pre-built S3 client; when given, connect() and close()
                leave its lifecycle to the caller
        """
        self.s3_config = s3_config
        self.chunk_size = chunk_size
        self._client = client
        self._owns_client = client is None
        self._client_ctx = None
        self._session = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the S3 client."""
        if self._connected:
            return

        if self._owns_client:
            self._session = get_session()

            client_kwargs = {
                "region_name": self.s3_config.region,
            }

            if self.s3_config.endpoint_url:
                client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

            if self.s3_config.access_key_id:
                client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
                client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

            try:
                self._client_ctx = self._session.create_client("s3", **client_kwargs)
                self._client = await self._client_ctx.__aenter__()
            except (BotoCoreError, ClientError) as e:
                raise StorageConnectionError(f"Failed to create S3 client: {e}") from e

        self._connected = True
        logger.info(
            "S3 object source connected",
            extra={
                "bucket": self.s3_config.bucket,
                "endpoint": self.s3_config.endpoint_url,
                "region": self.s3_config.region,
            },
        )

    async def close(self) -> None:
        """Close the S3 client."""
        if self._owns_client and self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client_ctx = None
            self._client = None
        self._connected = False

    async def list(self, prefix: str, delimiter: str = "/") -> ListingPage:
        """List one folder level with ListObjectsV2.

        Args:
            prefix: Key prefix
            delimiter: Hierarchy delimiter

        Returns:
            ListingPage with leaf keys and common prefixes

        Raises:
            StorageConnectionError: If not connected
            ListingError: If S3 rejects or fails the listing
        """
        if not self._connected:
            raise StorageConnectionError("Not connected", prefix=prefix)

        params = {
            "Bucket": self.s3_config.bucket,
            "Prefix": prefix,
            "Delimiter": delimiter,
        }
        keys: list[str] = []
        prefixes: list[str] = []

        try:
            if self.s3_config.paginate_listings:
                paginator = self._client.get_paginator("list_objects_v2")
                async for page in paginator.paginate(**params):
                    _collect(page, keys, prefixes)
            else:
                page = await self._client.list_objects_v2(**params)
                _collect(page, keys, prefixes)
                if page.get("IsTruncated"):
                    logger.warning(
                        "Listing truncated, pagination disabled",
                        extra={"prefix": prefix, "returned": len(keys) + len(prefixes)},
                    )
        except (BotoCoreError, ClientError) as e:
            raise ListingError(f"Failed to list {prefix}: {e}", prefix=prefix) from e

        return ListingPage(keys=tuple(keys), prefixes=tuple(prefixes))

    async def get_content(self, key: str) -> ObjectContent | None:
        """Open an object body with GetObject.

        Args:
            key: Object key

        Returns:
            ObjectContent streaming the body, or None if the response has no body

        Raises:
            StorageConnectionError: If not connected
            FetchError: If S3 rejects or fails the read
        """
        if not self._connected:
            raise StorageConnectionError("Not connected", key=key)

        try:
            response = await self._client.get_object(
                Bucket=self.s3_config.bucket,
                Key=key,
            )
        except (BotoCoreError, ClientError) as e:
            raise FetchError(f"Failed to get {key}: {e}", key=key) from e

        body = response.get("Body")
        if body is None:
            return None

        return ObjectContent(
            key=key,
            chunks=self._iter_body(body, key),
            size=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            closer=body.close,
        )

    async def _iter_body(self, body: Any, key: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in body.iter_chunks(self.chunk_size):
                yield chunk
        except _BODY_ERRORS as e:
            raise FetchError(f"Failed reading body of {key}: {e}", key=key) from e


def _collect(page: dict[str, Any], keys: list[str], prefixes: list[str]) -> None:
    for obj in page.get("Contents", []):
        keys.append(obj["Key"])
    for common in page.get("CommonPrefixes", []):
        prefixes.append(common["Prefix"])
