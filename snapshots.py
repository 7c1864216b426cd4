"""Per-store baseline snapshots used by the diff engine.

A snapshot maps external item id to the listing last seen for it. `get`
returns None when a store has no baseline yet (first crawl).
"""

import logging
import sqlite3
from datetime import timedelta
from typing import Optional, Protocol

from config import BASELINE_WINDOW_MINUTES
from db import (
    format_ts,
    get_store_listings,
    get_store_snapshot,
    save_store_snapshot,
    touch_listings,
    utcnow,
)
from models import Listing

logger = logging.getLogger(__name__)

Snapshot = dict[str, Listing]


class SnapshotStore(Protocol):
    def get(self, store_id: int) -> Optional[Snapshot]: ...

    def put(self, store_id: int, snapshot: Snapshot) -> None: ...


class InMemorySnapshotStore:
    """Process-local baselines. Only correct with a single worker."""

    def __init__(self):
        self._snapshots: dict[int, Snapshot] = {}

    def get(self, store_id: int) -> Optional[Snapshot]:
        snapshot = self._snapshots.get(store_id)
        return dict(snapshot) if snapshot is not None else None

    def put(self, store_id: int, snapshot: Snapshot) -> None:
        self._snapshots[store_id] = dict(snapshot)


class DatabaseSnapshotStore:
    """Baseline = the item ids of the store's last crawl, kept in the database.

    Shared by every worker, so it survives restarts and works across
    processes. A snapshot older than the window counts as no baseline.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        window: timedelta = timedelta(minutes=BASELINE_WINDOW_MINUTES),
    ):
        self.conn = conn
        self.window = window

    def get(self, store_id: int) -> Optional[Snapshot]:
        since = format_ts(utcnow() - self.window)
        item_ids = get_store_snapshot(self.conn, store_id, since)
        if item_ids is None:
            logger.debug(f"Store {store_id}: no baseline taken since {since}")
            return None
        known = {l.external_item_id: l for l in get_store_listings(self.conn, store_id)}
        # cache-only crawls leave ids without a listings row
        return {
            item_id: known.get(item_id)
            or Listing(store_id=store_id, external_item_id=item_id, title="")
            for item_id in item_ids
        }

    def put(self, store_id: int, snapshot: Snapshot) -> None:
        now = format_ts(utcnow())
        save_store_snapshot(self.conn, store_id, snapshot.keys(), now)
        touch_listings(self.conn, store_id, snapshot.keys(), now)
