"""Per-store crawl locks shared by all worker processes through the database.

Every state change is a single conditional UPDATE, so SQLite's write
serialisation makes acquire/release atomic across processes.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Optional

from config import STALE_LOCK_MINUTES, WORKER_ID
from db import format_ts, parse_ts, utcnow
from models import Store

logger = logging.getLogger(__name__)


class CrawlLockManager:
    def __init__(
        self,
        conn: sqlite3.Connection,
        worker_id: str = WORKER_ID,
        stale_after: timedelta = timedelta(minutes=STALE_LOCK_MINUTES),
    ):
        self.conn = conn
        self.worker_id = worker_id
        self.stale_after = stale_after

    def try_acquire(
        self,
        store_id: int,
        stale_after: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Take the store's lock for this worker.

        Succeeds if the lock is free, already ours, or held past the staleness
        timeout. Returns False when another worker is running the store.
        """
        now = now or utcnow()
        stale_cutoff = format_ts(now - (stale_after or self.stale_after))
        self.conn.execute(
            "INSERT OR IGNORE INTO crawl_locks (store_id, is_running) VALUES (?, 0)",
            (store_id,),
        )
        cursor = self.conn.execute(
            """UPDATE crawl_locks
            SET is_running = 1, owner_id = ?, started_at = ?
            WHERE store_id = ?
              AND (is_running = 0 OR owner_id = ? OR owner_id IS NULL
                   OR started_at IS NULL OR started_at < ?)""",
            (self.worker_id, format_ts(now), store_id, self.worker_id, stale_cutoff),
        )
        self.conn.commit()
        acquired = cursor.rowcount == 1
        if not acquired:
            lock = self.get_lock(store_id)
            logger.info(
                f"Store {store_id} is already being crawled by {lock and lock['owner_id']}"
            )
        return acquired

    def release(self, store_id: int) -> bool:
        cursor = self.conn.execute(
            """UPDATE crawl_locks SET is_running = 0, owner_id = NULL, started_at = NULL
            WHERE store_id = ? AND owner_id = ?""",
            (store_id, self.worker_id),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def release_all(self) -> int:
        """Clear every running lock owned by this worker (shutdown path)."""
        cursor = self.conn.execute(
            """UPDATE crawl_locks SET is_running = 0, owner_id = NULL, started_at = NULL
            WHERE owner_id = ? AND is_running = 1""",
            (self.worker_id,),
        )
        self.conn.commit()
        if cursor.rowcount:
            logger.info(f"Released {cursor.rowcount} locks held by {self.worker_id}")
        return cursor.rowcount

    def sweep_stale(
        self, max_age: Optional[timedelta] = None, now: Optional[datetime] = None
    ) -> int:
        """Force-clear running locks older than max_age, whoever owns them."""
        max_age = max_age if max_age is not None else self.stale_after
        cutoff = format_ts((now or utcnow()) - max_age)
        cursor = self.conn.execute(
            """UPDATE crawl_locks SET is_running = 0, owner_id = NULL, started_at = NULL
            WHERE is_running = 1 AND started_at < ?""",
            (cutoff,),
        )
        self.conn.commit()
        if cursor.rowcount:
            logger.warning(f"Cleared {cursor.rowcount} stale crawl locks")
        return cursor.rowcount

    def get_lock(self, store_id: int) -> Optional[dict]:
        row = self.conn.execute(
            "SELECT * FROM crawl_locks WHERE store_id = ?", (store_id,)
        ).fetchone()
        return dict(row) if row else None

    def running_count(self, store_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM crawl_locks WHERE store_id = ? AND is_running = 1",
            (store_id,),
        ).fetchone()
        return row[0]


def is_due(store: Store, now: Optional[datetime] = None) -> bool:
    """Whether at least crawl_interval seconds have passed since the last crawl."""
    if not store.last_crawled_at:
        return True
    elapsed = (now or utcnow()) - parse_ts(store.last_crawled_at)
    return elapsed >= timedelta(seconds=store.crawl_interval)
