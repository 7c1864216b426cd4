"""SQLite database operations for the store listing monitor."""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional

from config import DB_BUSY_TIMEOUT, DB_PATH, DEFAULT_CRAWL_INTERVAL_SECONDS
from models import CrawlLogStatus, Listing, ListingStatus, Store, VerificationStatus

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(dt: datetime) -> str:
    """Format a datetime as a UTC timestamp string (sortable as text)."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(TIMESTAMP_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def now_utc() -> str:
    """Return current time in UTC as a timestamp string."""
    return format_ts(utcnow())


SCHEMA = """
CREATE TABLE IF NOT EXISTS stores (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    store_name TEXT NOT NULL UNIQUE,
    store_url TEXT,
    is_active BOOLEAN NOT NULL DEFAULT 1,
    crawl_interval INTEGER NOT NULL DEFAULT 60,
    last_crawled_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS crawl_locks (
    store_id INTEGER PRIMARY KEY REFERENCES stores(id) ON DELETE CASCADE,
    is_running BOOLEAN NOT NULL DEFAULT 0,
    owner_id TEXT,
    started_at DATETIME
);

CREATE TABLE IF NOT EXISTS listings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
    external_item_id TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    price REAL NOT NULL DEFAULT 0,
    currency TEXT NOT NULL DEFAULT 'USD',
    condition TEXT,
    image_url TEXT,
    listing_url TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    first_seen_at DATETIME,
    last_seen_at DATETIME,
    sold_at DATETIME
);

CREATE INDEX IF NOT EXISTS idx_listings_store ON listings(store_id);
CREATE INDEX IF NOT EXISTS idx_listings_last_seen ON listings(last_seen_at);
CREATE INDEX IF NOT EXISTS idx_listings_status ON listings(status);

CREATE TABLE IF NOT EXISTS store_snapshots (
    store_id INTEGER PRIMARY KEY REFERENCES stores(id) ON DELETE CASCADE,
    taken_at DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS store_snapshot_items (
    store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
    external_item_id TEXT NOT NULL,
    PRIMARY KEY (store_id, external_item_id)
);

CREATE TABLE IF NOT EXISTS crawl_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    store_id INTEGER NOT NULL REFERENCES stores(id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    found INTEGER NOT NULL DEFAULT 0,
    new INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    sold INTEGER NOT NULL DEFAULT 0,
    started_at DATETIME NOT NULL,
    completed_at DATETIME,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_crawl_logs_store ON crawl_logs(store_id, started_at);

CREATE TABLE IF NOT EXISTS listing_changes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    listing_id INTEGER REFERENCES listings(id) ON DELETE CASCADE,
    change_type TEXT,
    old_value TEXT,
    new_value TEXT,
    changed_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS pending_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    store_id INTEGER REFERENCES stores(id) ON DELETE CASCADE,
    alert_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    sent_at DATETIME
);

CREATE TABLE IF NOT EXISTS proxies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    host TEXT NOT NULL,
    port INTEGER NOT NULL,
    username TEXT,
    password TEXT,
    proxy_type TEXT NOT NULL DEFAULT 'HTTP',
    is_active BOOLEAN NOT NULL DEFAULT 1,
    blocked_until DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS proxy_usage_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    proxy_id INTEGER REFERENCES proxies(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    store_id INTEGER,
    url TEXT,
    error_message TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


def get_connection(db_path: str = DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=DB_BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(db_path: str = DB_PATH):
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    _migrate_verification_columns(conn)
    conn.close()


_VERIFICATION_COLUMNS = [
    ("verification_status", "TEXT NOT NULL DEFAULT 'PENDING'"),
    ("last_verified_at", "DATETIME"),
    ("verification_error", "TEXT"),
    ("last_sold_qty", "INTEGER"),
    ("last_available_qty", "INTEGER"),
    ("last_remaining_qty", "INTEGER"),
]


def _migrate_verification_columns(conn: sqlite3.Connection):
    """Add verification columns to an existing listings table if missing."""
    existing = {
        row[1] for row in conn.execute("PRAGMA table_info(listings)").fetchall()
    }
    for col_name, col_type in _VERIFICATION_COLUMNS:
        if col_name not in existing:
            conn.execute(f"ALTER TABLE listings ADD COLUMN {col_name} {col_type}")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_listings_verification "
        "ON listings(verification_status)"
    )
    conn.commit()


# --- Stores ---

def _store_from_row(row: sqlite3.Row) -> Store:
    return Store(
        id=row["id"],
        store_name=row["store_name"],
        store_url=row["store_url"],
        is_active=bool(row["is_active"]),
        crawl_interval=row["crawl_interval"],
        last_crawled_at=row["last_crawled_at"],
    )


def add_store(
    conn: sqlite3.Connection,
    store_name: str,
    store_url: Optional[str] = None,
    crawl_interval: int = DEFAULT_CRAWL_INTERVAL_SECONDS,
) -> int:
    cursor = conn.execute(
        "INSERT INTO stores (store_name, store_url, crawl_interval) VALUES (?, ?, ?)",
        (store_name, store_url or f"https://www.ebay.com/str/{store_name}", crawl_interval),
    )
    conn.commit()
    return cursor.lastrowid


def get_store(conn: sqlite3.Connection, store_id: int) -> Optional[Store]:
    row = conn.execute("SELECT * FROM stores WHERE id = ?", (store_id,)).fetchone()
    return _store_from_row(row) if row else None


def get_active_stores(conn: sqlite3.Connection) -> list[Store]:
    rows = conn.execute(
        "SELECT * FROM stores WHERE is_active = 1 ORDER BY id"
    ).fetchall()
    return [_store_from_row(r) for r in rows]


def set_store_crawled(conn: sqlite3.Connection, store_id: int, crawled_at: str):
    conn.execute(
        "UPDATE stores SET last_crawled_at = ? WHERE id = ?", (crawled_at, store_id)
    )


# --- Listings ---

def get_listing_by_item_id(conn: sqlite3.Connection, item_id: str) -> Optional[Listing]:
    row = conn.execute(
        "SELECT * FROM listings WHERE external_item_id = ?", (item_id,)
    ).fetchone()
    return Listing.from_row(row) if row else None


def get_listing(conn: sqlite3.Connection, listing_id: int) -> Optional[Listing]:
    row = conn.execute("SELECT * FROM listings WHERE id = ?", (listing_id,)).fetchone()
    return Listing.from_row(row) if row else None


def get_store_listings(conn: sqlite3.Connection, store_id: int) -> list[Listing]:
    rows = conn.execute(
        "SELECT * FROM listings WHERE store_id = ?", (store_id,)
    ).fetchall()
    return [Listing.from_row(r) for r in rows]


def insert_listing(conn: sqlite3.Connection, listing: Listing, now: str) -> int:
    cursor = conn.execute(
        """INSERT INTO listings
            (store_id, external_item_id, title, price, currency, condition,
             image_url, listing_url, status, verification_status,
             first_seen_at, last_seen_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            listing.store_id, listing.external_item_id, listing.title,
            listing.price, listing.currency, listing.condition,
            listing.image_url, listing.listing_url, listing.status.value,
            listing.verification_status.value, now, now,
        ),
    )
    return cursor.lastrowid


def update_listing(conn: sqlite3.Connection, listing_id: int, **fields):
    """Update the given columns of one listing. Enum values are stored by value."""
    if not fields:
        return
    values = [v.value if isinstance(v, (ListingStatus, VerificationStatus)) else v
              for v in fields.values()]
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    conn.execute(
        f"UPDATE listings SET {set_clause} WHERE id = ?",
        (*values, listing_id),
    )


def touch_listings(conn: sqlite3.Connection, store_id: int, item_ids: Iterable[str], now: str):
    """Refresh last_seen_at for the given items of a store."""
    conn.executemany(
        "UPDATE listings SET last_seen_at = ? WHERE store_id = ? AND external_item_id = ?",
        [(now, store_id, item_id) for item_id in item_ids],
    )


def delete_listing(conn: sqlite3.Connection, listing_id: int):
    conn.execute("DELETE FROM listings WHERE id = ?", (listing_id,))


# --- Store snapshots ---

def save_store_snapshot(
    conn: sqlite3.Connection, store_id: int, item_ids: Iterable[str], taken_at: str
):
    """Replace the store's baseline with exactly `item_ids`."""
    conn.execute("DELETE FROM store_snapshot_items WHERE store_id = ?", (store_id,))
    conn.executemany(
        "INSERT OR IGNORE INTO store_snapshot_items (store_id, external_item_id) VALUES (?, ?)",
        [(store_id, item_id) for item_id in item_ids],
    )
    conn.execute(
        "INSERT OR REPLACE INTO store_snapshots (store_id, taken_at) VALUES (?, ?)",
        (store_id, taken_at),
    )


def get_store_snapshot(
    conn: sqlite3.Connection, store_id: int, since: str
) -> Optional[list[str]]:
    """Item ids of the store's baseline, or None if none was taken since `since`."""
    row = conn.execute(
        "SELECT taken_at FROM store_snapshots WHERE store_id = ? AND taken_at >= ?",
        (store_id, since),
    ).fetchone()
    if row is None:
        return None
    rows = conn.execute(
        "SELECT external_item_id FROM store_snapshot_items WHERE store_id = ?",
        (store_id,),
    ).fetchall()
    return [r[0] for r in rows]


def get_pending_listings(
    conn: sqlite3.Connection, since: str, limit: int, exclude_ids: Iterable[int] = ()
) -> list[Listing]:
    """Removed listings awaiting verification, detected at or after `since`.

    Rows whose id is in `exclude_ids` are skipped.
    """
    exclude_ids = list(exclude_ids)
    exclude_clause = ""
    if exclude_ids:
        exclude_clause = f"AND id NOT IN ({', '.join('?' for _ in exclude_ids)})"
    rows = conn.execute(
        f"""SELECT * FROM listings
        WHERE verification_status = ? AND status = ? AND last_seen_at >= ?
        {exclude_clause}
        ORDER BY last_seen_at DESC
        LIMIT ?""",
        (
            VerificationStatus.PENDING.value, ListingStatus.REMOVED.value, since,
            *exclude_ids, limit,
        ),
    ).fetchall()
    return [Listing.from_row(r) for r in rows]


def get_error_listings(
    conn: sqlite3.Connection, verified_before: str, limit: int
) -> list[Listing]:
    rows = conn.execute(
        """SELECT * FROM listings
        WHERE verification_status = ? AND last_verified_at < ?
        ORDER BY last_verified_at ASC
        LIMIT ?""",
        (VerificationStatus.ERROR.value, verified_before, limit),
    ).fetchall()
    return [Listing.from_row(r) for r in rows]


def get_stale_verified_listings(
    conn: sqlite3.Connection, verified_before: str
) -> list[Listing]:
    # ACTIVE rows may still be listed; deleting them would re-alert them as new
    rows = conn.execute(
        """SELECT * FROM listings
        WHERE verification_status IN (?, ?, ?) AND last_verified_at < ?
          AND status != ?""",
        (
            VerificationStatus.VERIFIED.value,
            VerificationStatus.OUT_OF_STOCK.value,
            VerificationStatus.LISTING_ENDED.value,
            verified_before,
            ListingStatus.ACTIVE.value,
        ),
    ).fetchall()
    return [Listing.from_row(r) for r in rows]


def get_verification_counts(conn: sqlite3.Connection) -> dict[str, int]:
    rows = conn.execute(
        "SELECT verification_status, COUNT(*) AS cnt FROM listings GROUP BY verification_status"
    ).fetchall()
    return {r["verification_status"]: r["cnt"] for r in rows}


def log_listing_change(
    conn: sqlite3.Connection, listing_id: int,
    change_type: str, old_value: str, new_value: str,
):
    conn.execute(
        "INSERT INTO listing_changes (listing_id, change_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (listing_id, change_type, old_value, new_value),
    )


# --- Crawl logs ---

def start_crawl_log(conn: sqlite3.Connection, store_id: int, started_at: str) -> int:
    cursor = conn.execute(
        "INSERT INTO crawl_logs (store_id, status, started_at) VALUES (?, ?, ?)",
        (store_id, CrawlLogStatus.RUNNING.value, started_at),
    )
    conn.commit()
    return cursor.lastrowid


def finish_crawl_log(
    conn: sqlite3.Connection,
    log_id: int,
    status: CrawlLogStatus,
    found: int = 0,
    new: int = 0,
    updated: int = 0,
    sold: int = 0,
    error_message: Optional[str] = None,
):
    """Finalise a RUNNING crawl log. Logs that are already final are left untouched."""
    conn.execute(
        """UPDATE crawl_logs SET
            status = ?, found = ?, new = ?, updated = ?, sold = ?,
            completed_at = ?, error_message = ?
        WHERE id = ? AND status = ?""",
        (
            status.value, found, new, updated, sold, now_utc(), error_message,
            log_id, CrawlLogStatus.RUNNING.value,
        ),
    )
    conn.commit()


def get_last_crawl_log(conn: sqlite3.Connection, store_id: int) -> Optional[dict]:
    row = conn.execute(
        "SELECT * FROM crawl_logs WHERE store_id = ? ORDER BY started_at DESC, id DESC LIMIT 1",
        (store_id,),
    ).fetchone()
    return dict(row) if row else None


# --- Alerts ---

def enqueue_alert(conn: sqlite3.Connection, store_id: int, alert_type: str, payload: dict):
    conn.execute(
        "INSERT INTO pending_alerts (store_id, alert_type, payload, created_at) VALUES (?, ?, ?, ?)",
        (store_id, alert_type, json.dumps(payload, ensure_ascii=False), now_utc()),
    )
    conn.commit()


def count_unsent_alerts(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM pending_alerts WHERE sent_at IS NULL").fetchone()
    return row[0]


def get_unsent_alerts(conn: sqlite3.Connection, store_id: Optional[int] = None) -> list[dict]:
    query = "SELECT * FROM pending_alerts WHERE sent_at IS NULL"
    params: list = []
    if store_id is not None:
        query += " AND store_id = ?"
        params.append(store_id)
    rows = conn.execute(query + " ORDER BY id", params).fetchall()
    alerts = []
    for row in rows:
        alert = dict(row)
        alert["payload"] = json.loads(alert["payload"])
        alerts.append(alert)
    return alerts
