"""
API layer for PhotoZip.

This module provides the aiohttp application that maps one download
request onto one archive stream.
"""

from .http_server import (
    content_disposition,
    create_http_app,
    handle_folder_archive,
    handle_health,
    start_http_server,
)

__all__ = [
    "content_disposition",
    "create_http_app",
    "handle_folder_archive",
    "handle_health",
    "start_http_server",
]
