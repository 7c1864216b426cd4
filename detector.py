"""Change detection: reconcile a crawl against the store's baseline snapshot."""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Mapping, Optional

from config import ANOMALY_REMOVAL_RATIO, ANOMALY_REMOVAL_THRESHOLD
from db import (
    get_listing_by_item_id,
    insert_listing,
    log_listing_change,
    now_utc,
    update_listing,
)
from models import Listing, ListingStatus, ScrapedListing, VerificationStatus
from parsers.base import parse_currency, parse_price
from snapshots import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    new_ids: list[str]
    removed_ids: list[str]
    common_ids: list[str]
    anomaly: bool = False


@dataclass
class DiffSummary:
    found: int = 0
    new: int = 0
    updated: int = 0
    sold: int = 0  # removals marked pending verification
    anomaly: bool = False
    first_crawl: bool = False
    new_item_ids: list[str] = field(default_factory=list)
    removed_item_ids: list[str] = field(default_factory=list)


def diff_snapshots(
    current: Mapping[str, object],
    baseline: Optional[Mapping[str, object]],
    threshold: int = ANOMALY_REMOVAL_THRESHOLD,
    ratio: Optional[float] = ANOMALY_REMOVAL_RATIO,
) -> DiffResult:
    """Split item ids into new / removed / common.

    Order follows the input mappings. `anomaly` is set when more than
    `threshold` items vanished at once (or more than `ratio` of the
    baseline, if given), which usually means a broken crawl rather than
    real sales.
    """
    baseline = baseline or {}
    new_ids = [i for i in current if i not in baseline]
    common_ids = [i for i in current if i in baseline]
    removed_ids = [i for i in baseline if i not in current]

    anomaly = len(removed_ids) > threshold
    if ratio is not None and baseline and len(removed_ids) / len(baseline) > ratio:
        anomaly = True
    return DiffResult(new_ids, removed_ids, common_ids, anomaly)


def to_listing(store_id: int, scraped: ScrapedListing) -> Listing:
    return Listing(
        store_id=store_id,
        external_item_id=scraped.item_id,
        title=scraped.title,
        price=parse_price(scraped.price_text),
        currency=parse_currency(scraped.price_text),
        condition=scraped.condition,
        image_url=scraped.image_url,
        listing_url=scraped.url,
    )


class ChangeDetector:
    """Applies the diff of each crawl to the listings table."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        snapshot_store: SnapshotStore,
        threshold: int = ANOMALY_REMOVAL_THRESHOLD,
        ratio: Optional[float] = ANOMALY_REMOVAL_RATIO,
        persist_new: bool = True,
    ):
        self.conn = conn
        self.snapshot_store = snapshot_store
        self.threshold = threshold
        self.ratio = ratio
        self.persist_new = persist_new

    def process_listings(
        self, store_id: int, scraped: list[ScrapedListing], label: str = ""
    ) -> DiffSummary:
        """Diff one crawl against the baseline and persist the result.

        New items are saved right away, removals are marked REMOVED/PENDING
        for the verification pass, and common items get their fields
        refreshed. Ids missing from the baseline but already in the table are
        reactivated and counted as updated, not new. On an anomaly no removal
        is recorded. The current crawl always becomes the next baseline.
        """
        label = label or str(store_id)
        now = now_utc()
        current = {s.item_id: to_listing(store_id, s) for s in scraped}
        baseline = self.snapshot_store.get(store_id)
        diff = diff_snapshots(current, baseline, self.threshold, self.ratio)

        summary = DiffSummary(
            found=len(current), anomaly=diff.anomaly, first_crawl=baseline is None
        )

        for item_id in diff.new_ids:
            if not self.persist_new or self._save_new(current[item_id], now):
                summary.new_item_ids.append(item_id)
            else:
                summary.updated += 1
        summary.new = len(summary.new_item_ids)

        if baseline is None:
            logger.info(f"[{label}] No baseline yet, {len(current)} listings recorded")
        elif diff.anomaly:
            logger.warning(
                f"[{label}] {len(diff.removed_ids)} of {len(baseline)} listings vanished "
                f"at once, treating as crawl anomaly; no removals recorded"
            )
        else:
            for item_id in diff.removed_ids:
                if self._mark_removed(item_id, now):
                    summary.removed_item_ids.append(item_id)
            summary.sold = len(summary.removed_item_ids)

            for item_id in diff.common_ids:
                if self._refresh_existing(current[item_id], now):
                    summary.updated += 1

        self.snapshot_store.put(store_id, current)
        self.conn.commit()

        logger.info(
            f"[{label}] Diff: {summary.found} found, {summary.new} new, "
            f"{summary.updated} updated, {summary.sold} pending verification"
        )
        return summary

    def _save_new(self, listing: Listing, now: str) -> bool:
        """Insert a listing missing from the baseline. Returns False if it was already known."""
        existing = get_listing_by_item_id(self.conn, listing.external_item_id)
        if existing is None:
            insert_listing(self.conn, listing, now)
            return True

        # Known from an earlier crawl: reactivate, but it is not new
        if existing.status != ListingStatus.ACTIVE:
            log_listing_change(
                self.conn, existing.id, "status",
                existing.status.value, ListingStatus.ACTIVE.value,
            )
        update_listing(
            self.conn,
            existing.id,
            title=listing.title,
            price=listing.price,
            currency=listing.currency,
            condition=listing.condition,
            image_url=listing.image_url,
            listing_url=listing.listing_url,
            status=ListingStatus.ACTIVE,
            verification_status=VerificationStatus.VERIFIED,
            verification_error=None,
            last_seen_at=now,
        )
        return False

    def _mark_removed(self, item_id: str, now: str) -> bool:
        existing = get_listing_by_item_id(self.conn, item_id)
        if existing is None:
            return False
        update_listing(
            self.conn,
            existing.id,
            status=ListingStatus.REMOVED,
            verification_status=VerificationStatus.PENDING,
            last_seen_at=now,
        )
        log_listing_change(
            self.conn, existing.id, "status",
            existing.status.value, ListingStatus.REMOVED.value,
        )
        return True

    def _refresh_existing(self, listing: Listing, now: str) -> bool:
        """Update changed fields of a listing seen again. Returns True if any changed."""
        existing = get_listing_by_item_id(self.conn, listing.external_item_id)
        if existing is None:
            return False

        changes = {}
        for name in ("title", "price", "currency", "condition", "image_url", "listing_url"):
            new_value = getattr(listing, name)
            if new_value is not None and new_value != getattr(existing, name):
                changes[name] = new_value

        if "price" in changes:
            log_listing_change(
                self.conn, existing.id, "price", str(existing.price), str(listing.price)
            )
        if "title" in changes:
            log_listing_change(self.conn, existing.id, "title", existing.title, listing.title)

        update_listing(self.conn, existing.id, last_seen_at=now, **changes)
        return bool(changes)
