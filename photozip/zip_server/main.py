"""
PhotoZip Server - Main entry point.

This module starts the PhotoZip server:
- Object source (one shared S3/R2 client)
- HTTP server (folder download route)

Usage:
    python -m photozip.zip_server.main

Configuration is entirely via environment variables; a .env file in the
working directory is loaded first. See config.py for all available settings.

Invariants:
    - The object source is connected before the HTTP site accepts requests
    - Graceful shutdown stops accepting requests before closing the source

How to change safely:
    - Keep the object source a single shared instance
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web
from dotenv import load_dotenv

from .api import start_http_server
from .config import ServerConfig
from .storage import ObjectSource, create_object_source

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # botocore logs every request at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """PhotoZip server orchestrator.

    Attributes:
        config: Server configuration
        source: Shared object source
        runner: aiohttp runner while serving

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None, source: ObjectSource | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            source: Optional object source (built from config if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self.source = source
        self.runner: web.AppRunner | None = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, wait: bool = True) -> None:
        """Start the server.

        Args:
            wait: Block until request_shutdown() is called
        """
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting PhotoZip server")
        self.config.log_config()

        try:
            if self.source is None:
                self.source = create_object_source(self.config)
            await self.source.connect()

            self.runner = await start_http_server(self.source, self.config)

            self._running = True
            logger.info("PhotoZip server started successfully")

            if wait:
                await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._release()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping PhotoZip server")
        await self._release()
        self._running = False
        logger.info("PhotoZip server stopped")

    async def _release(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        if self.source:
            await self.source.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    load_dotenv()

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    server = Server(config)

    # SIGTERM and SIGINT both drain through request_shutdown()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
