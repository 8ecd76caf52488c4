"""
Object source abstraction for PhotoZip.

This module provides a pluggable storage backend interface supporting:
- S3 and S3-compatible stores such as Cloudflare R2 (production)
- In-memory (for testing)

Invariants:
    - list() covers exactly one hierarchy level per prefix
    - get_content() streams; bodies are never buffered whole
    - Failures propagate; backends never retry

How to change safely:
    - New backends must implement the ObjectSource protocol
    - Register them in create_object_source()
"""

from .base import (
    FetchError,
    ListingError,
    ListingPage,
    ObjectContent,
    ObjectSource,
    StorageConnectionError,
    StorageError,
    create_object_source,
)
from .memory import InMemoryObjectSource
from .s3 import S3ObjectSource

__all__ = [
    # Protocol and types
    "ObjectSource",
    "ListingPage",
    "ObjectContent",
    "StorageError",
    "StorageConnectionError",
    "ListingError",
    "FetchError",
    # Factory
    "create_object_source",
    # Implementations
    "S3ObjectSource",
    "InMemoryObjectSource",
]
