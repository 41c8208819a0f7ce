"""
Shared constants used across the release kit.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Album layout
ALBUM_MANIFEST_FILENAME = "album.toml"
AUDIO_DIR = "audio"
ARTWORK_DIR = "artwork"
NOTES_DIR = "notes"
COVER_ART_NAMES = [
    "cover.jpg", "cover.png", "cover.jpeg", "cover.webp", "artwork.jpg", "artwork.png",
    "folder.jpg", "folder.png", "album.jpg", "album.png",
]

# Audio formats
AUDIO_CONTENT_TYPES = {
    ".flac": "audio/flac",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Cloudflare endpoints
CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
CLOUDFLARE_R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"
CLOUDFLARE_R2_HOST_TEMPLATE = "{account_id}.r2.cloudflarestorage.com"
CLOUDFLARE_R2_PUBLIC_URL_TEMPLATE = "https://pub-{account_id}.r2.dev"
PAGES_HOSTNAME_TEMPLATE = "{project}.pages.dev"
PAGES_PRODUCTION_BRANCH = "main"
PAGES_MAX_FILE_SIZE_MB = 25
DNS_RECORD_TYPE = "CNAME"
CDN_SUBDOMAIN = "cdn"
BUCKET_SUFFIX = "-audio"
CORS_MAX_AGE_SECONDS = 3600

# Network Settings
DEFAULT_NETWORK_TIMEOUT = 300  # seconds, large site bundles

# Upload settings
MAX_UPLOAD_CONCURRENCY = 16
FALLBACK_UPLOAD_CONCURRENCY = 3


def upload_concurrency_from_env(raw):
    """Parse RELEASE_KIT_UPLOAD_CONCURRENCY, falling back to 3 when unset or out of range."""
    if raw is None or not raw.strip():
        return FALLBACK_UPLOAD_CONCURRENCY
    try:
        value = int(raw)
    except ValueError:
        value = None
    if value is None or not 1 <= value <= MAX_UPLOAD_CONCURRENCY:
        logger.warning(
            f"Ignoring RELEASE_KIT_UPLOAD_CONCURRENCY={raw!r}: expected an integer "
            f"between 1 and {MAX_UPLOAD_CONCURRENCY}, using {FALLBACK_UPLOAD_CONCURRENCY}"
        )
        return FALLBACK_UPLOAD_CONCURRENCY
    return value


DEFAULT_UPLOAD_CONCURRENCY = upload_concurrency_from_env(os.getenv("RELEASE_KIT_UPLOAD_CONCURRENCY"))
UPLOAD_MAX_ATTEMPTS = 5
UPLOAD_BACKOFF_SECONDS = 1.0
DELETE_BATCH_SIZE = 1000  # S3 DeleteObjects limit

# Configuration paths
DEFAULT_CONFIG_DIR = os.getenv("RELEASE_KIT_CONFIG_DIR", "~/.release-kit")
CONFIG_FILENAME = "config.toml"
CONFIG_FILE_MODE = 0o600

# Logging
DEFAULT_LOG_LEVEL = os.getenv("RELEASE_KIT_LOG_LEVEL", "WARNING")
