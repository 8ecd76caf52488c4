"""
Configuration management for the PhotoZip server.

All configuration is done via environment variables (a local .env file is
loaded at startup for development). This module provides typed
configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The S3 backend requires an explicit bucket
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep the CLOUDFLARE_* names working; deployments rely on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env(*names: str, default: str | None = None) -> str | None:
    """First non-empty environment variable among ``names``."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StorageBackend(Enum):
    """Supported object source backends."""

    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class S3Config:
    """S3 / Cloudflare R2 configuration.

    Attributes:
        bucket: Bucket name
        region: Region ("auto" for R2)
        endpoint_url: Custom endpoint URL (R2, MinIO)
        account_id: Cloudflare account ID, used to derive the R2 endpoint
        access_key_id: Access key ID (optional, uses the AWS credential chain)
        secret_access_key: Secret access key (optional)
        paginate_listings: Follow ListObjectsV2 continuation tokens
    """

    bucket: str = ""
    region: str = "auto"
    endpoint_url: str | None = None
    account_id: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    paginate_listings: bool = True

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        account_id = _env("CLOUDFLARE_ACCOUNT_ID")
        endpoint_url = _env("S3_ENDPOINT")
        if endpoint_url is None and account_id:
            endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"

        return cls(
            bucket=_env("S3_BUCKET", "CLOUDFLARE_BUCKET_NAME", default=""),
            region=_env("S3_REGION", "CLOUDFLARE_REGION", default="auto"),
            endpoint_url=endpoint_url,
            account_id=account_id,
            access_key_id=_env("AWS_ACCESS_KEY_ID", "CLOUDFLARE_ACCESS_KEY_ID"),
            secret_access_key=_env("AWS_SECRET_ACCESS_KEY", "CLOUDFLARE_SECRET_ACCESS_KEY"),
            paginate_listings=_env_bool("S3_PAGINATE_LISTINGS", "true"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        handler_cancellation: Cancel the request handler when the client
            disconnects, interrupting in-flight storage calls
    """

    host: str = "0.0.0.0"
    port: int = 3000
    handler_cancellation: bool = True

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            handler_cancellation=_env_bool("HTTP_HANDLER_CANCELLATION", "true"),
        )


@dataclass(frozen=True)
class ArchiveConfig:
    """Archive building configuration.

    Attributes:
        root_template: Walk root template, formatted with user_id and folder_id
        delimiter: Hierarchy delimiter of the key space
        chunk_size: Object body read size in bytes
    """

    root_template: str = "photosession/{user_id}/{folder_id}/"
    delimiter: str = "/"
    chunk_size: int = 64 * 1024

    @classmethod
    def from_env(cls) -> ArchiveConfig:
        """Load configuration from environment variables."""
        return cls(
            root_template=os.getenv("ARCHIVE_ROOT_TEMPLATE", "photosession/{user_id}/{folder_id}/"),
            delimiter=os.getenv("ARCHIVE_DELIMITER", "/"),
            chunk_size=int(os.getenv("ARCHIVE_CHUNK_SIZE", str(64 * 1024))),
        )

    def walk_root(self, user_id: str, folder_id: str) -> str:
        """Build the walk root for one request."""
        return self.root_template.format(user_id=user_id, folder_id=folder_id)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage_backend: Which object source backend to use
        s3: S3 configuration
        http: HTTP server configuration
        archive: Archive configuration
        observability: Logging configuration
    """

    storage_backend: StorageBackend = StorageBackend.S3
    s3: S3Config = field(default_factory=S3Config)
    http: HttpConfig = field(default_factory=HttpConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORAGE_BACKEND", "s3").lower()
        try:
            storage_backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: s3, memory"
            )

        config = cls(
            storage_backend=storage_backend,
            s3=S3Config.from_env(),
            http=HttpConfig.from_env(),
            archive=ArchiveConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage_backend == StorageBackend.S3:
            if not self.s3.bucket:
                raise ValueError(
                    "S3_BUCKET (or CLOUDFLARE_BUCKET_NAME) is required when STORAGE_BACKEND=s3"
                )
            if bool(self.s3.access_key_id) != bool(self.s3.secret_access_key):
                raise ValueError("Access key ID and secret access key must be set together")

        if not self.archive.delimiter:
            raise ValueError("ARCHIVE_DELIMITER must not be empty")
        if self.archive.chunk_size <= 0:
            raise ValueError("ARCHIVE_CHUNK_SIZE must be positive")

        try:
            root = self.archive.walk_root(user_id="user", folder_id="folder")
        except (KeyError, IndexError) as e:
            raise ValueError(
                f"ARCHIVE_ROOT_TEMPLATE may only use {{user_id}} and {{folder_id}}: {e}"
            )
        if not root.endswith(self.archive.delimiter):
            logger.warning(
                "ARCHIVE_ROOT_TEMPLATE does not end with the delimiter; "
                "sibling folders sharing the name prefix will be included"
            )

        if not 0 < self.http.port < 65536:
            raise ValueError(f"PORT out of range: {self.http.port}")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage_backend.value,
                "s3_bucket": self.s3.bucket,
                "s3_endpoint": self.s3.endpoint_url,
                "s3_region": self.s3.region,
                "s3_credentials": "explicit" if self.s3.access_key_id else "default-chain",
                "paginate_listings": self.s3.paginate_listings,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "root_template": self.archive.root_template,
                "log_level": self.observability.log_level,
            },
        )
