"""
Core Constants for Album Organizer

Central place for format tables, thresholds and default limits.
"""

# Audio formats
LOSSLESS_EXTENSIONS = frozenset({'flac', 'wav', 'aiff', 'alac'})
LOSSY_EXTENSIONS = frozenset({'mp3', 'm4a', 'ogg', 'opus', 'wma'})
AUDIO_EXTENSIONS = LOSSLESS_EXTENSIONS | LOSSY_EXTENSIONS

# Classification
DEFAULT_MANUAL_REVIEW_THRESHOLD = 50
ARTIST_WEIGHT = 30
TITLE_WEIGHT = 20
YEAR_WEIGHT = 10
COMPILATION_BASE_SCORE = 50
MIN_YEAR = 1900
MAX_YEAR = 2099

UNKNOWN_ARTIST = "Unknown Artist"
VARIOUS_ARTISTS = "Various Artists"
UNTITLED = "Untitled"

# Raw tag / folder values that never name an artist
DEFAULT_NOISE_ARTIST_VALUES = (
    "",
    "unknown",
    "unknown artist",
    "incoming",
    "downloads",
    "download",
    "unsorted",
    "new folder",
    "music",
    "temp",
    "tmp",
    "_incoming",
)

COMPILATION_ARTIST_VALUES = ("various artists", "various", "va", "v.a.", "v/a", "compilation")

# Parenthetical qualifiers that are never catalog numbers
DEFAULT_CATALOG_EXCLUSION_PATTERNS = (
    r"\bremix(es)?\b",
    r"\bmix\b",
    r"\bedit\b",
    r"\bversion\b",
    r"\binstrumental\b",
    r"\bvocal\b",
    r"\binch\b",
    r"\b\d+\s*(?:\"|in\b)",
    r"\bvinyl\b",
)

# Organization
DEFAULT_QUALITY_TIER_NAMES = {
    "Lossless": "Lossless",
    "Lossy": "Lossy",
    "Mixed": "Mixed",
    "Unknown": "Unknown",
}
LABELS_FOLDER = "Labels"
DEFAULT_TITLE_MAX_LENGTH = 100
DEFAULT_CLEANUP_MAX_LEVELS = 3
STAGING_PREFIX = ".staging-"

# Performance & Threading
MAX_WORKER_THREADS = 16
CHECKSUM_CHUNK_SIZE = 1024 * 1024

# Album selection
SINCE_DATE_FORMAT = "%Y-%m-%d"

# State store
DEFAULT_STATE_DB = "album_organizer.db"
STORE_BUSY_TIMEOUT = 5.0
STORE_MAX_ATTEMPTS = 6
STORE_BASE_DELAY = 0.05
STORE_MAX_DELAY = 2.0

# Enrichment
DISCOGS_API_URL = "https://api.discogs.com"
ENRICHMENT_USER_AGENT = "AlbumOrganizer/1.0"
ENRICHMENT_TIMEOUT = 10
ENRICHMENT_RATE_LIMIT_PER_MINUTE = 25
ENRICHMENT_CACHE_TTL_HOURS = 168
ENRICHMENT_MIN_CONFIDENCE = 0.7
