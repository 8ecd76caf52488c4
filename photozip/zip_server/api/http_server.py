"""
HTTP server implementation for PhotoZip.

Exposes one download route that streams a folder of the bucket as a ZIP,
plus a health check.

Endpoints:
    GET /photosession/{user_id}/{folder_id}/  - Stream the folder as {folder_id}.zip
    GET /health                               - Health check

Invariants:
    - Framing headers are fixed before the first archive byte is written
    - The response is prepared lazily, so failures before any byte become a 500
    - Failures after streaming began abort the transport; a truncated archive
      is never terminated like a successful one
    - Client disconnects abort the archive and are only logged

How to change safely:
    - Keep the sink the only writer of the response body
    - Never call write_eof() unless the archive was finalized
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial

from aiohttp import web

from ..archive import (
    AbortSignal,
    ArchiveAborted,
    ArchiveAggregator,
    ArchiveEvent,
    ArchiveStream,
)
from ..config import ServerConfig, StorageBackend
from ..storage import ObjectSource

logger = logging.getLogger(__name__)

ARCHIVE_ROUTE = "/photosession/{user_id}/{folder_id}"
ZIP_CONTENT_TYPE = "application/zip"


def create_http_app(
    source: ObjectSource,
    config: ServerConfig | None = None,
) -> web.Application:
    """Create the HTTP application.

    Args:
        source: Shared object source, already connected
        config: Server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or ServerConfig()
    app = web.Application()

    archive_handler = partial(handle_folder_archive, source=source, config=config)
    app.router.add_get(ARCHIVE_ROUTE + "/", archive_handler)
    app.router.add_get(ARCHIVE_ROUTE, archive_handler)
    app.router.add_get("/health", partial(handle_health, source=source, config=config))

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.append(error_middleware)

    return app


def content_disposition(folder_id: str) -> str:
    """Attachment header naming the archive after the folder.

    Raises:
        ValueError: If the folder id contains control characters, which
            cannot be carried in a header value
    """
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in folder_id):
        raise ValueError(f"Folder id {folder_id!r} contains control characters")
    filename = folder_id.replace("\\", "\\\\").replace('"', '\\"')
    return f'attachment; filename="{filename}.zip"'


async def handle_folder_archive(
    request: web.Request,
    source: ObjectSource,
    config: ServerConfig,
) -> web.StreamResponse:
    """Handle GET /photosession/{user_id}/{folder_id}/ - Stream folder as ZIP."""
    user_id = request.match_info["user_id"]
    folder_id = request.match_info["folder_id"]
    root = config.archive.walk_root(user_id, folder_id)
    log_extra = {"user_id": user_id, "folder_id": folder_id, "prefix": root}

    logger.info(f"Start processing folder: {root}", extra=log_extra)

    try:
        disposition = content_disposition(folder_id)
    except ValueError as e:
        logger.error(f"Error creating ZIP: {e}", extra=log_extra)
        return web.Response(status=500, text=f"Error creating ZIP: {e}")

    response = web.StreamResponse(
        status=200,
        headers={"Content-Type": ZIP_CONTENT_TYPE, "Content-Disposition": disposition},
    )
    signal = AbortSignal()
    committed = False

    async def commit() -> None:
        nonlocal committed
        if not committed:
            await response.prepare(request)
            committed = True

    async def write(chunk: bytes) -> None:
        try:
            await commit()
            await response.write(chunk)
        except ConnectionResetError:
            signal.abort("client disconnected")
            raise ArchiveAborted("client disconnected")

    archive = ArchiveStream(write, signal=signal)
    archive.add_listener(
        ArchiveEvent.ERROR,
        lambda e: logger.error(f"Archiver error: {e}", extra=log_extra),
    )
    archive.add_listener(
        ArchiveEvent.FINISH,
        lambda a: logger.info(
            f"Zip stream finished for folder: {root}",
            extra={**log_extra, "entries": len(a.entry_names), "bytes": a.bytes_written},
        ),
    )
    archive.add_listener(
        ArchiveEvent.ABORT,
        lambda reason: logger.info(f"Archive for {root} aborted: {reason}", extra=log_extra),
    )

    aggregator = ArchiveAggregator(source, config.archive.delimiter)
    try:
        await aggregator.aggregate(root, archive, signal)
        await commit()
        await response.write_eof()
        return response

    except asyncio.CancelledError:
        logger.info(f"Request for {root} cancelled by client", extra=log_extra)
        signal.abort("client disconnected")
        raise

    except ArchiveAborted as e:
        logger.info(f"Request for {root} cancelled by client: {e.reason}", extra=log_extra)
        _abort_transport(request)
        return response

    except ConnectionResetError:
        logger.info(f"Request for {root} closed before end of stream", extra=log_extra)
        return response

    except Exception as e:
        logger.error(f"Error creating ZIP: {e}", extra=log_extra, exc_info=True)
        archive.abort(f"failed: {e}")
        if not committed:
            return web.Response(status=500, text=f"Error creating ZIP: {e}")
        # Headers already committed to success framing
        _abort_transport(request)
        return response


def _abort_transport(request: web.Request) -> None:
    transport = request.transport
    if transport is not None and not transport.is_closing():
        transport.abort()


async def handle_health(
    request: web.Request,
    source: ObjectSource,
    config: ServerConfig,
) -> web.Response:
    """Handle GET /health - Health check."""
    result = {
        "healthy": source.is_connected,
        "backend": config.storage_backend.value,
    }
    if config.storage_backend == StorageBackend.S3:
        result["bucket"] = config.s3.bucket

    status = 200 if result["healthy"] else 503
    return web.json_response(result, status=status)


async def start_http_server(
    source: ObjectSource,
    config: ServerConfig,
) -> web.AppRunner:
    """Start serving on the configured host and port.

    Args:
        source: Shared object source
        config: Server configuration

    Returns:
        The AppRunner; call ``cleanup()`` on it to stop serving
    """
    app = create_http_app(source, config)

    runner = web.AppRunner(app, handler_cancellation=config.http.handler_cancellation)
    await runner.setup()

    site = web.TCPSite(runner, config.http.host, config.http.port)
    await site.start()

    logger.info(f"Server running on http://{config.http.host}:{config.http.port}")
    return runner
