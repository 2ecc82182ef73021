"""
Constants for cloudnav.

Store key names and data version are part of the persisted format; the
rest are defaults that can also be set through the config system.
"""

# Remote store keys
KEY_CATEGORIES = "bookmarks:categories"
KEY_SITES = "bookmarks:sites"
KEY_METADATA = "bookmarks:metadata"
KEY_VERSION = "data:version"

# Data format version written by migration and accepted at startup
CURRENT_DATA_VERSION = "1.0.0"
SUPPORTED_DATA_VERSIONS = ("1.0.0",)

# Cache defaults (seconds)
DEFAULT_CACHE_TTL = 3600
DEFAULT_CACHE_MAX_SIZE = 100
DEFAULT_CLEANUP_INTERVAL = 300
KV_CACHE_TTL = 300
DATA_CACHE_TTL = 600

CACHE_FILE_PREFIX = "cloudnav_cache_"
KV_CACHE_PREFIX = "kv_"
DATA_CACHE_PREFIX = "dm_"

# Record defaults
DEFAULT_SITE_ICON = "/images/default.svg"

# Batch processing
DEFAULT_MAX_WORKERS = 8

# Network timeouts (in seconds)
DEFAULT_REQUEST_TIMEOUT = 10
CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
