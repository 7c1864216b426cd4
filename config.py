"""Configuration for the store listing monitor.

Every value can be overridden from the environment (or a `.env` file loaded
by the entry point).
"""

import os
import socket
from typing import Optional


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


DB_PATH = _get_env("DB_PATH", "listings.db")
DB_BUSY_TIMEOUT = _parse_int(_get_env("DB_BUSY_TIMEOUT"), 30)  # seconds

# Identifies this worker process in crawl_locks.owner_id
WORKER_ID = _get_env("WORKER_ID") or f"{socket.gethostname()}-{os.getpid()}"

# --- Listing pages ---

SEARCH_URL_TEMPLATE = (
    "https://www.ebay.com/sch/i.html?_dkr=1&iconV2Request=true"
    "&_blrs=recall_filtering&_ssn=f_sou_shop&store_cat=0"
    "&store_name={store_name}&_ipg=240&_sop=15&_pgn={page}"
)
FULL_PAGE_SIZE = 240  # items on a full search result page (_ipg=240)
MAX_PAGES_PER_SESSION = _parse_int(_get_env("MAX_PAGES_PER_SESSION"), 5)
PAGE_DELAY_SECONDS = _parse_float(_get_env("PAGE_DELAY_SECONDS"), 1.0)
PAGE_SETTLE_SECONDS = _parse_float(_get_env("PAGE_SETTLE_SECONDS"), 2.0)

NAVIGATION_TIMEOUT_MS = _parse_int(_get_env("NAVIGATION_TIMEOUT_MS"), 60000)
ELEMENT_TIMEOUT_MS = _parse_int(_get_env("ELEMENT_TIMEOUT_MS"), 15000)

BROWSER_LAUNCH_ATTEMPTS = _parse_int(_get_env("BROWSER_LAUNCH_ATTEMPTS"), 3)
BROWSER_LAUNCH_BACKOFF_SECONDS = _parse_float(_get_env("BROWSER_LAUNCH_BACKOFF_SECONDS"), 2.0)
HEADLESS = _parse_bool(_get_env("HEADLESS", "true"), True)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)
BROWSER_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-zygote",
    "--disable-gpu",
    "--disable-software-rasterizer",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
]

# --- Proxies ---

USE_PROXY = _parse_bool(_get_env("USE_PROXY"), False)
PROXY_BLOCK_MINUTES = _parse_int(_get_env("PROXY_BLOCK_MINUTES"), 60)

# --- Scheduling & locks ---

CRAWL_CYCLE_SECONDS = _parse_int(_get_env("CRAWL_CYCLE_SECONDS"), 60)
VERIFY_INTERVAL_MINUTES = _parse_int(_get_env("VERIFY_INTERVAL_MINUTES"), 5)
STALE_LOCK_MINUTES = _parse_int(_get_env("STALE_LOCK_MINUTES"), 30)
DEFAULT_CRAWL_INTERVAL_SECONDS = _parse_int(_get_env("DEFAULT_CRAWL_INTERVAL_SECONDS"), 60)

# --- Diff ---

SNAPSHOT_MODE = _get_env("SNAPSHOT_MODE", "database")  # 'database' | 'memory'
BASELINE_WINDOW_MINUTES = _parse_int(_get_env("BASELINE_WINDOW_MINUTES"), 30)
ANOMALY_REMOVAL_THRESHOLD = _parse_int(_get_env("ANOMALY_REMOVAL_THRESHOLD"), 5)
# Optional share of the baseline (0-1). Unset means only the absolute threshold applies.
ANOMALY_REMOVAL_RATIO = _parse_float(_get_env("ANOMALY_REMOVAL_RATIO"), None)
ERROR_MESSAGE_MAX_LENGTH = 500

# --- Verification ---

DETAIL_API_BASE_URL = _get_env("DETAIL_API_BASE_URL", "https://apisd.ebay.com")
EBAY_API_AUTHORIZATION = _get_env("EBAY_API_AUTHORIZATION", "")
DETAIL_API_TIMEOUT = _parse_int(_get_env("DETAIL_API_TIMEOUT"), 30)  # seconds
DETAIL_API_ATTEMPTS = _parse_int(_get_env("DETAIL_API_ATTEMPTS"), 3)

REMOVAL_POLICY = _get_env("REMOVAL_POLICY", "retain")  # 'retain' | 'delete'

VERIFY_BATCH_SIZE = _parse_int(_get_env("VERIFY_BATCH_SIZE"), 10)
VERIFY_BATCH_DELAY_SECONDS = _parse_float(_get_env("VERIFY_BATCH_DELAY_SECONDS"), 2.0)
VERIFY_WINDOW_MINUTES = _parse_int(_get_env("VERIFY_WINDOW_MINUTES"), 60)
RETRY_BATCH_SIZE = _parse_int(_get_env("RETRY_BATCH_SIZE"), 5)
RETRY_MIN_AGE_HOURS = _parse_int(_get_env("RETRY_MIN_AGE_HOURS"), 24)
CLEANUP_MAX_AGE_DAYS = _parse_int(_get_env("CLEANUP_MAX_AGE_DAYS"), 30)

HEALTH_PENDING_WARNING = 100
HEALTH_ERROR_LIMIT = 50
HEALTH_ALERT_BACKLOG = 20
