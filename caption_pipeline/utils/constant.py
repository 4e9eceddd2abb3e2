"""Project-wide constants for convenient reuse."""

# pylint: disable=line-too-long

from __future__ import annotations

import os
import pathlib
import sys
from typing import Final

from caption_pipeline.utils.env_loader import load_project_env

# Ensure .env is loaded exactly once at import time for the whole project
if "pytest" not in sys.modules:
    load_project_env()


# Repository root resolved relative to this file (utils/constant.py → package → repo)
REPO_ROOT: Final[pathlib.Path] = pathlib.Path(__file__).resolve().parents[2]

# Default path of the dotenv file containing runtime overrides
ENV_FILE: Final[pathlib.Path] = REPO_ROOT / ".env"

# Fallback identity used when no authenticated user is attached to a request
DEFAULT_USER_ID: Final[str] = os.getenv("DEFAULT_USER_ID", "default-user")

# Document store ("memory" keeps everything in-process, "mongo" uses MONGODB_URI)
DOCUMENT_STORE_BACKEND: Final[str] = os.getenv("DOCUMENT_STORE_BACKEND", "memory").lower()
MONGODB_URI: Final[str] = os.getenv("MONGODB_URI", "")
MONGODB_DB: Final[str] = os.getenv("MONGODB_DB", "caption_pipeline")

# Object storage ("local" writes below LOCAL_STORAGE_ROOT, "s3" uses boto3)
STORAGE_BACKEND: Final[str] = os.getenv("STORAGE_BACKEND", "local").lower()
LOCAL_STORAGE_ROOT: Final[pathlib.Path] = pathlib.Path(
    os.getenv("LOCAL_STORAGE_ROOT", str(REPO_ROOT / "data" / "storage"))
).resolve()
STORAGE_PUBLIC_BASE_URL: Final[str] = os.getenv("STORAGE_PUBLIC_BASE_URL", "")
S3_BUCKET_NAME: Final[str] = os.getenv("S3_BUCKET_NAME", "")
S3_REGION: Final[str] = os.getenv("S3_REGION", "us-east-1")
S3_ENDPOINT_URL: Final[str] = os.getenv("S3_ENDPOINT_URL", "")

# Object key prefixes
STORAGE_PREFIX_CAPTIONS: Final[str] = os.getenv("STORAGE_PREFIX_CAPTIONS", "captions")
STORAGE_PREFIX_RENDERS: Final[str] = os.getenv("STORAGE_PREFIX_RENDERS", "renders")
STORAGE_PREFIX_UPLOADS: Final[str] = os.getenv("STORAGE_PREFIX_UPLOADS", "uploads")

# Remote rendering worker
FFMPEG_WORKER_URL: Final[str] = os.getenv("FFMPEG_WORKER_URL", "")
WORKER_JWT_SECRET: Final[str] = os.getenv("WORKER_JWT_SECRET", "")
WORKER_TOKEN_TTL_SEC: Final[int] = int(os.getenv("WORKER_TOKEN_TTL_SEC", "600"))

# Outbound HTTP timeout shared by worker, portal and callback clients
HTTP_TIMEOUT_SEC: Final[float] = float(os.getenv("HTTP_TIMEOUT_SEC", "30"))

# Single-flight marker lifetime for render creation (seconds)
RENDER_LOCK_TTL_SEC: Final[int] = int(os.getenv("RENDER_LOCK_TTL_SEC", "120"))

# Render defaults
DEFAULT_TEMPLATE: Final[str] = os.getenv("DEFAULT_TEMPLATE", "karaoke")
DEFAULT_RESOLUTION: Final[str] = os.getenv("DEFAULT_RESOLUTION", "1080p")

# Portal export
ENABLE_PORTAL_EXPORT: Final[bool] = os.getenv("ENABLE_PORTAL_EXPORT", "False").lower() == "true"
PORTAL_EXPORT_URL: Final[str] = os.getenv("PORTAL_EXPORT_URL", "")
PORTAL_EXPORT_NAME: Final[str] = os.getenv("PORTAL_EXPORT_NAME", "Portal")
PORTAL_SECRET: Final[str] = os.getenv("PORTAL_SECRET", "")
PORTAL_MAX_COUNT: Final[int] = int(os.getenv("PORTAL_MAX_COUNT", "10"))
EXPORT_MAX_ATTEMPTS: Final[int] = int(os.getenv("EXPORT_MAX_ATTEMPTS", "3"))
EXPORT_RETRY_BASE_SEC: Final[int] = int(os.getenv("EXPORT_RETRY_BASE_SEC", "60"))
# Insert the export row before triggering the render (False restores the
# trigger-first ordering)
EXPORT_INSERT_ROW_FIRST: Final[bool] = (
    os.getenv("EXPORT_INSERT_ROW_FIRST", "True").lower() == "true"
)
EXPORT_SOURCE_NAME: Final[str] = os.getenv("EXPORT_SOURCE_NAME", "AutoCaptions")

# Integration partner (content scheduler)
INTEGRATION_JWT_SECRET: Final[str] = os.getenv("INTEGRATION_JWT_SECRET", "")
INTEGRATION_API_TOKEN: Final[str] = os.getenv("INTEGRATION_API_TOKEN", "")
CALLBACK_MAX_RETRIES: Final[int] = int(os.getenv("CALLBACK_MAX_RETRIES", "3"))
ERROR_CALLBACK_MAX_RETRIES: Final[int] = int(os.getenv("ERROR_CALLBACK_MAX_RETRIES", "2"))

# Root log level used when the CLI is run without --verbose
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()

# REST API configuration
API_CORS_ORIGINS: Final[str] = os.getenv("API_CORS_ORIGINS", "")
API_SERVER_NAME: Final[str] = os.getenv("API_SERVER_NAME", "0.0.0.0")
API_SERVER_PORT: Final[int] = int(os.getenv("API_SERVER_PORT", "8080"))

# Emoji overlay assets (Twemoji PNG directory)
EMOJI_ASSET_BASE_URL: Final[str] = os.getenv(
    "EMOJI_ASSET_BASE_URL", "https://cdnjs.cloudflare.com/ajax/libs/twemoji/14.0.2/72x72"
)
