"""
Base protocol and types for the object source abstraction.

This module defines the ObjectSource protocol that all storage backends
must implement, along with the listing result, the object content handle
and the storage error hierarchy.

Invariants:
    - list() returns one level of the hierarchy: leaf keys plus common prefixes
    - get_content() returns None only when the object has no body
    - Backends never retry; every failure is raised to the caller

How to change safely:
    - Protocol changes require updating all implementations
    - Keep ObjectContent chunk iteration lazy; never read a whole body
    - New error kinds must subclass StorageError
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig


class StorageError(Exception):
    """Base exception for object source operations.

    Attributes:
        message: Error message
        key: Object key involved, if any
        prefix: Listing prefix involved, if any
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        prefix: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.key = key
        self.prefix = prefix


class StorageConnectionError(StorageError):
    """Object source is not connected or the connection failed."""


class ListingError(StorageError):
    """A list call was rejected or could not complete."""


class FetchError(StorageError):
    """A content read for a known key was rejected or could not complete."""


@dataclass(frozen=True)
class ListingPage:
    """One level of a delimiter listing.

    Attributes:
        keys: Leaf object keys directly under the listed prefix
        prefixes: Common prefixes (child virtual folders), each ending in the delimiter
    """

    keys: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.keys) + len(self.prefixes)


@dataclass
class ObjectContent:
    """Handle on one object's body.

    The body is consumed through ``chunks`` exactly once. ``close()`` releases
    the underlying connection and is safe to call more than once.

    Attributes:
        key: Object key
        chunks: Async iterator over the body bytes
        size: Content length if the backend reported one
        last_modified: Last modification time if the backend reported one

    Example:
        >>> content = await source.get_content("photosession/u1/f1/a.jpg")
        >>> try:
        ...     async for chunk in content.chunks:
        ...         sink.write(chunk)
        ... finally:
        ...     content.close()
    """

    key: str
    chunks: AsyncIterator[bytes]
    size: int | None = None
    last_modified: datetime | None = None
    closer: Callable[[], Any] | None = field(default=None, repr=False)

    def close(self) -> None:
        """Release the body stream."""
        closer, self.closer = self.closer, None
        if closer is not None:
            closer()


@runtime_checkable
class ObjectSource(Protocol):
    """Protocol for object storage backends.

    The core consumes exactly two capabilities: a one-level delimiter
    listing and a streamed content read. Connection handling exists so the
    process can share one long-lived client across all requests.

    Example:
        >>> source = S3ObjectSource(config.s3)
        >>> await source.connect()
        >>> page = await source.list("photosession/u1/f1/", "/")
        >>> print(page.keys, page.prefixes)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend client.

        Raises:
            StorageConnectionError: If the client cannot be created
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the backend client."""
        ...

    @abstractmethod
    async def list(self, prefix: str, delimiter: str = "/") -> ListingPage:
        """List one level under a prefix.

        Args:
            prefix: Key prefix to list
            delimiter: Hierarchy delimiter

        Returns:
            ListingPage with leaf keys and child common prefixes

        Raises:
            StorageConnectionError: If not connected
            ListingError: If the listing fails
        """
        ...

    @abstractmethod
    async def get_content(self, key: str) -> ObjectContent | None:
        """Open an object's body for streaming.

        Args:
            key: Object key

        Returns:
            ObjectContent, or None if the object has no body

        Raises:
            StorageConnectionError: If not connected
            FetchError: If the read fails
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the backend client is open."""
        ...


def create_object_source(config: ServerConfig) -> ObjectSource:
    """Factory function to create an object source from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate ObjectSource implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryObjectSource
    from .s3 import S3ObjectSource

    if config.storage_backend == StorageBackend.S3:
        return S3ObjectSource(config.s3, chunk_size=config.archive.chunk_size)
    elif config.storage_backend == StorageBackend.MEMORY:
        return InMemoryObjectSource(chunk_size=config.archive.chunk_size)
    else:
        raise ValueError(f"Unsupported storage backend: {config.storage_backend}")
