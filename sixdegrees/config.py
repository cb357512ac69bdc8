"""
Application configuration and environment variables
"""
import os
from pathlib import Path

# Data directory configuration
DATA_DIR = Path(os.environ.get('DATA_DIR', './data'))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Database configuration
DATABASE_PATH = Path(os.environ.get('DATABASE_PATH', DATA_DIR / 'connections.db'))

# Cache configuration
CACHE_MAX_SIZE = int(os.environ.get('CACHE_MAX_SIZE', 10000))
CACHE_ENABLE_DB_PERSISTENCE = os.environ.get('CACHE_ENABLE_DB_PERSISTENCE', '1') not in ('0', 'false', 'False')
# Entries not used within this many days are dropped when the cache starts
CACHE_RETENTION_DAYS = int(os.environ.get('CACHE_RETENTION_DAYS', 30))

# Upper bound on the number of equally short paths returned from the cache
MAX_CACHED_PATHS = 10

# Remote neighbor service
NEIGHBOR_SERVICE_URL = os.environ.get('NEIGHBOR_SERVICE_URL', 'http://localhost:9000')

# Profiles resolved per lookup request, and per user connection lookup
USER_LOOKUP_BATCH_SIZE = 100
MAX_USER_LOOKUP_COUNT = int(os.environ.get('MAX_USER_LOOKUP_COUNT', 100))

# Rate limit windows (seconds) and per-window allowances for each query class
RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get('RATE_LIMIT_WINDOW_SECONDS', 15 * 60))
DEFAULT_RATE_LIMITS = {
    'hashtag_connections_by_hashtag': 180,
    'user_connections_by_id': 15,
}

# Default search limits per entity mode
HASHTAG_SEARCH_DEFAULTS = {'max_degrees': 6, 'max_calls': 60, 'max_connections': 500}
USER_SEARCH_DEFAULTS = {'max_degrees': 6, 'max_calls': 5, 'max_connections': 50}

# API configuration
API_TITLE = "Six Degrees Link Finder API"
API_VERSION = "1.0.0"

# CORS origins
CORS_ORIGINS = [
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]
