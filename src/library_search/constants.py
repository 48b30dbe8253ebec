"""Project-wide constants."""

from pathlib import Path

# -- Base client defaults ---------------------------------------------------
DEFAULT_TIMEOUT: float = 30.0

# -- Cache ------------------------------------------------------------------
# Anchored to the project root (two levels above this package's src/ dir) so
# that a single _cache/ directory is used regardless of the working directory.
_PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
DEFAULT_CACHE_DIR: Path = _PROJECT_ROOT / "_cache"
CACHE_TTL: int = 86400  # 1 day in seconds

# -- Unitrad aggregator -----------------------------------------------------
AGGREGATOR_BASE_URL: str = "https://unitrad.calil.jp/v1"
SEARCH_PATH: str = "/search"
POLLING_PATH: str = "/polling"
DEFAULT_REGION: str = "gk-2004103-auf08"

# The aggregator expects clients to poll at this fixed cadence until
# running=false. There is no backoff.
POLL_INTERVAL: float = 0.5
INITIAL_VERSION: int = 1

# -- Slots ------------------------------------------------------------------
SEARCH_SLOT: str = "search"
BOOK_SLOT_PREFIX: str = "book:"

# -- Query parameter codec --------------------------------------------------
# Ordered as they appear in the address bar.
DETAIL_FIELDS: tuple[str, ...] = (
    "title",
    "author",
    "publisher",
    "ndc",
    "year_start",
    "year_end",
)
