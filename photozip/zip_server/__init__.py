"""
PhotoZip Server - streams a bucket folder to the client as a ZIP download.

This package implements a small download service built on:
- An S3-compatible bucket (Cloudflare R2 in production) as the only store
- A delimiter walk that discovers every object under a folder prefix
- A store-only ZIP writer that emits bytes as soon as they are produced

Architecture:
    ┌─────────────┐  GET /photosession/{user}/{folder}/  ┌──────────────────┐
    │   Client    │─────────────────────────────────────▶│ Request Pipeline │
    └─────────────┘◀──────── streamed ZIP bytes ─────────└────────┬─────────┘
           ▲                                                      │ abort
           │                                                      ▼
           │              ┌───────────────┐  keys   ┌──────────────────────┐
           │              │ Prefix Walker │────────▶│ Archive Aggregator   │
           │              └───────┬───────┘         └──────────┬───────────┘
           │                      │ list                       │ get / append
           │                      ▼                            ▼
           │              ┌─────────────────────────┐   ┌───────────────┐
           │              │ Object Source (S3 / R2) │   │ ArchiveStream │
           │              └─────────────────────────┘   └───────┬───────┘
           └────────────────────────────────────────────────────┘

Invariants:
    - Nothing is written to local disk; one object body is in flight per request
    - Every object under the folder is appended exactly once before finalize
    - A failed or cancelled request never ends like a successful download
    - No state survives a request; the only shared object is the storage client

How to change safely:
    - Keep fetches sequential per request
    - Route new storage backends through storage.create_object_source()
    - Test disconnect handling whenever the response path changes

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
