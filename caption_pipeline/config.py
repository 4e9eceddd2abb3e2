"""Configuration dataclasses for the caption pipeline.

This module groups related environment settings into small objects that are
built once at startup and injected into the services, keeping the services
free of direct ``os.environ`` access.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from caption_pipeline.errors import CaptionConfigurationError
from caption_pipeline.utils.constant import (
    CALLBACK_MAX_RETRIES,
    DEFAULT_RESOLUTION,
    DEFAULT_TEMPLATE,
    DOCUMENT_STORE_BACKEND,
    ENABLE_PORTAL_EXPORT,
    ERROR_CALLBACK_MAX_RETRIES,
    EXPORT_INSERT_ROW_FIRST,
    EXPORT_MAX_ATTEMPTS,
    EXPORT_RETRY_BASE_SEC,
    EXPORT_SOURCE_NAME,
    FFMPEG_WORKER_URL,
    HTTP_TIMEOUT_SEC,
    INTEGRATION_API_TOKEN,
    INTEGRATION_JWT_SECRET,
    LOCAL_STORAGE_ROOT,
    MONGODB_DB,
    MONGODB_URI,
    PORTAL_EXPORT_NAME,
    PORTAL_EXPORT_URL,
    PORTAL_MAX_COUNT,
    PORTAL_SECRET,
    RENDER_LOCK_TTL_SEC,
    S3_BUCKET_NAME,
    S3_ENDPOINT_URL,
    S3_REGION,
    STORAGE_BACKEND,
    STORAGE_PREFIX_CAPTIONS,
    STORAGE_PREFIX_RENDERS,
    STORAGE_PREFIX_UPLOADS,
    STORAGE_PUBLIC_BASE_URL,
    WORKER_JWT_SECRET,
    WORKER_TOKEN_TTL_SEC,
)


@dataclass(frozen=True)
class Resolution:
    """Output canvas for a render resolution preset."""

    width: int
    height: int


RENDER_RESOLUTIONS: dict[str, Resolution] = {
    "720p": Resolution(width=1280, height=720),
    "1080p": Resolution(width=1920, height=1080),
    "1440p": Resolution(width=2560, height=1440),
    "4k": Resolution(width=3840, height=2160),
}


def normalize_resolution(value: str | None, fallback: str = DEFAULT_RESOLUTION) -> str:
    """Map a free-form resolution name onto a known preset.

    Unknown or empty values resolve to ``fallback``.
    """
    if not value:
        return fallback
    normalized = value.strip().lower()
    if normalized.isdigit():
        normalized = f"{normalized}p"
    if normalized == "2160p":
        normalized = "4k"
    return normalized if normalized in RENDER_RESOLUTIONS else fallback


@dataclass
class WorkerConfig:
    """Groups rendering worker settings.

    Attributes:
        url: Base URL of the worker; ``/render`` is appended.
        secret: Shared HS256 secret used to sign job tokens.
        token_ttl_sec: Lifetime of a job token.
        timeout_sec: Outbound HTTP timeout.

    """

    url: str = FFMPEG_WORKER_URL
    secret: str = WORKER_JWT_SECRET
    token_ttl_sec: int = WORKER_TOKEN_TTL_SEC
    timeout_sec: float = HTTP_TIMEOUT_SEC

    def require(self) -> None:
        """Fail fast when the worker endpoint or secret is not configured.

        Raises:
            CaptionConfigurationError: If a required value is missing.
        """
        if not self.url:
            raise CaptionConfigurationError(
                "Missing required environment variable: FFMPEG_WORKER_URL",
                code="worker_not_configured",
            )
        if not self.secret:
            raise CaptionConfigurationError(
                "Missing required environment variable: WORKER_JWT_SECRET",
                code="worker_not_configured",
            )


@dataclass
class RenderConfig:
    """Groups render-request defaults.

    Attributes:
        default_template: Template used when a request does not name one.
        default_resolution: Resolution preset used when none is given.
        lock_ttl_sec: Lifetime of the per-upload single-flight marker.
        captions_prefix: Object key prefix for caption files.
        renders_prefix: Object key prefix for rendered videos.
        uploads_prefix: Object key prefix for mirrored source videos.

    """

    default_template: str = DEFAULT_TEMPLATE
    default_resolution: str = DEFAULT_RESOLUTION
    lock_ttl_sec: int = RENDER_LOCK_TTL_SEC
    captions_prefix: str = STORAGE_PREFIX_CAPTIONS
    renders_prefix: str = STORAGE_PREFIX_RENDERS
    uploads_prefix: str = STORAGE_PREFIX_UPLOADS


@dataclass
class ExportConfig:
    """Groups portal export settings.

    Attributes:
        enabled: Accept export requests at all.
        default_portal_url: Single-portal fallback target.
        default_portal_name: Display name of the fallback portal.
        portal_secret: Value sent as ``x-portal-secret`` when set.
        worker_auth: Value sent as ``Authorization: Bearer`` when set.
        max_attempts: POST attempts per delivery burst.
        retry_base_sec: Backoff unit; attempt ``n`` schedules ``2**n`` units.
        portal_max_count: Highest ``PORTAL_EXPORT_URL_<n>`` index scanned.
        insert_row_first: Insert the export row before triggering the render.
        source_name: ``source`` field of the export payload.

    """

    enabled: bool = ENABLE_PORTAL_EXPORT
    default_portal_url: str = PORTAL_EXPORT_URL
    default_portal_name: str = PORTAL_EXPORT_NAME
    portal_secret: str = PORTAL_SECRET
    worker_auth: str = WORKER_JWT_SECRET
    max_attempts: int = EXPORT_MAX_ATTEMPTS
    retry_base_sec: int = EXPORT_RETRY_BASE_SEC
    portal_max_count: int = PORTAL_MAX_COUNT
    insert_row_first: bool = EXPORT_INSERT_ROW_FIRST
    source_name: str = EXPORT_SOURCE_NAME
    timeout_sec: float = HTTP_TIMEOUT_SEC


@dataclass
class IntegrationConfig:
    """Groups integration partner settings.

    Attributes:
        signing_secret: HMAC key for ``X-Signature``.
        api_token: Bearer token required on integration routes (open when empty).
        callback_max_retries: Attempts for progress/transcription/render callbacks.
        error_callback_max_retries: Attempts for failure callbacks.

    """

    signing_secret: str = INTEGRATION_JWT_SECRET
    api_token: str = INTEGRATION_API_TOKEN
    callback_max_retries: int = CALLBACK_MAX_RETRIES
    error_callback_max_retries: int = ERROR_CALLBACK_MAX_RETRIES
    timeout_sec: float = HTTP_TIMEOUT_SEC


@dataclass
class StorageConfig:
    """Groups document store and object storage settings."""

    document_backend: str = DOCUMENT_STORE_BACKEND
    mongodb_uri: str = MONGODB_URI
    mongodb_db: str = MONGODB_DB
    object_backend: str = STORAGE_BACKEND
    local_root: Path = LOCAL_STORAGE_ROOT
    public_base_url: str = STORAGE_PUBLIC_BASE_URL
    s3_bucket: str = S3_BUCKET_NAME
    s3_region: str = S3_REGION
    s3_endpoint_url: str = S3_ENDPOINT_URL
