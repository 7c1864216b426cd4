"""Batch verification of listings that disappeared from their stores."""

import logging
import sqlite3
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta
from typing import Callable, Optional

from config import (
    CLEANUP_MAX_AGE_DAYS,
    HEALTH_ALERT_BACKLOG,
    HEALTH_ERROR_LIMIT,
    HEALTH_PENDING_WARNING,
    RETRY_BATCH_SIZE,
    RETRY_MIN_AGE_HOURS,
    VERIFY_BATCH_DELAY_SECONDS,
    VERIFY_BATCH_SIZE,
    VERIFY_WINDOW_MINUTES,
)
from db import (
    count_unsent_alerts,
    delete_listing,
    format_ts,
    get_error_listings,
    get_pending_listings,
    get_stale_verified_listings,
    get_verification_counts,
    utcnow,
)
from models import BatchResult, Listing, StoreAlert, VerificationOutcome, VerificationStatus
from notifier import Notifier
from verification.service import VerificationService

logger = logging.getLogger(__name__)

_SUMMARY_KEYS = {
    VerificationStatus.SOLD_CONFIRMED: "sold",
    VerificationStatus.OUT_OF_STOCK: "out_of_stock",
    VerificationStatus.LISTING_ENDED: "listing_ended",
    VerificationStatus.VERIFIED: "verified",
    VerificationStatus.ERROR: "errors",
}


def _empty_summary() -> dict[str, int]:
    return {key: 0 for key in _SUMMARY_KEYS.values()}


class BatchVerificationProcessor:
    """Verifies pending listings in bounded, concurrent batches.

    Detail requests for one batch run in a thread pool; every database write
    happens afterwards on the calling thread.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        service: VerificationService,
        notifier: Optional[Notifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.conn = conn
        self.service = service
        self.notifier = notifier
        self._sleep = sleep

    def process_pending(
        self,
        batch_size: int = VERIFY_BATCH_SIZE,
        delay_seconds: float = VERIFY_BATCH_DELAY_SECONDS,
        window: timedelta = timedelta(minutes=VERIFY_WINDOW_MINUTES),
    ) -> BatchResult:
        """Verify REMOVED/PENDING listings detected within `window` until none remain."""
        result = BatchResult(summary=_empty_summary())
        attempted: set[int] = set()
        logger.info("=== Verifying recently removed listings ===")

        while True:
            since = format_ts(utcnow() - window)
            # rows whose outcome could not be written stay pending; skip them
            listings = get_pending_listings(self.conn, since, batch_size, exclude_ids=attempted)
            if not listings:
                break
            attempted.update(l.id for l in listings)

            logger.info(f"Verifying batch of {len(listings)} listings")
            self._run_batch(listings, result)

            if delay_seconds > 0:
                self._sleep(delay_seconds)

        logger.info(
            f"=== Verification done: {result.processed} processed, {result.successful} ok, "
            f"{result.failed} failed, summary {result.summary} ==="
        )
        return result

    def retry_failed(
        self,
        batch_size: int = RETRY_BATCH_SIZE,
        max_age: timedelta = timedelta(hours=RETRY_MIN_AGE_HOURS),
    ) -> BatchResult:
        """Re-verify one batch of ERROR listings last attempted before `max_age` ago."""
        result = BatchResult(summary=_empty_summary())
        cutoff = format_ts(utcnow() - max_age)
        listings = get_error_listings(self.conn, cutoff, batch_size)
        if not listings:
            logger.info("No failed verifications to retry")
            return result

        logger.info(f"Retrying {len(listings)} failed verifications")
        self._run_batch(listings, result)
        logger.info(f"Retry done: {result.successful} ok, {result.failed} failed")
        return result

    def _run_batch(self, listings: list[Listing], result: BatchResult):
        outcomes = self._verify_all(listings)
        sold_by_store: dict[int, list[str]] = defaultdict(list)

        for listing in listings:
            outcome = outcomes[listing.id]
            result.processed += 1
            try:
                self.service.apply_outcome(self.conn, listing, outcome)
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Failed to save verification of {listing.external_item_id}: {e}")
                result.failed += 1
                result.summary["errors"] += 1
                continue

            result.summary[_SUMMARY_KEYS[outcome.status]] += 1
            if outcome.status == VerificationStatus.ERROR:
                result.failed += 1
                continue

            result.successful += 1
            if outcome.is_sold:
                result.sold_ids.append(listing.external_item_id)
                sold_by_store[listing.store_id].append(listing.external_item_id)

        if self.notifier:
            for store_id, item_ids in sold_by_store.items():
                self.notifier.notify(store_id, StoreAlert(sold_item_ids=item_ids))

    def _verify_all(self, listings: list[Listing]) -> dict[int, VerificationOutcome]:
        """Verify every listing concurrently. One failure never affects the others."""
        outcomes: dict[int, VerificationOutcome] = {}
        with ThreadPoolExecutor(max_workers=max(1, len(listings))) as executor:
            futures = {
                executor.submit(self.service.verify, l.external_item_id): l for l in listings
            }
            for future in as_completed(futures):
                listing = futures[future]
                try:
                    outcomes[listing.id] = future.result()
                except Exception as e:
                    logger.warning(f"Verification of {listing.external_item_id} crashed: {e}")
                    outcomes[listing.id] = VerificationOutcome(
                        item_id=listing.external_item_id,
                        status=VerificationStatus.ERROR,
                        reason="verification failed",
                        error=str(e),
                    )
        return outcomes

    def stats(self) -> dict[str, int]:
        counts = get_verification_counts(self.conn)
        stats = {s.value.lower(): counts.get(s.value, 0) for s in VerificationStatus}
        stats["total"] = sum(counts.values())
        return stats

    def health_check(self) -> dict:
        issues = []
        status = "healthy"
        stats = self.stats()

        if stats["pending"] > HEALTH_PENDING_WARNING:
            issues.append(f"Too many unverified listings ({stats['pending']})")
            status = "warning"
        if stats["error"] > HEALTH_ERROR_LIMIT:
            issues.append(f"Too many verification errors ({stats['error']})")
            status = "error"

        backlog = count_unsent_alerts(self.conn)
        if backlog > HEALTH_ALERT_BACKLOG:
            issues.append(f"Too many undelivered alerts ({backlog})")
            if status == "healthy":
                status = "warning"

        return {"status": status, "issues": issues, "stats": stats, "alert_backlog": backlog}

    def cleanup_old_verifications(
        self,
        max_age: timedelta = timedelta(days=CLEANUP_MAX_AGE_DAYS),
        dry_run: bool = True,
    ) -> int:
        """Delete listings whose non-sold verification is older than `max_age`.

        With dry_run the candidates are only logged. Returns the number deleted.
        """
        cutoff = format_ts(utcnow() - max_age)
        old = get_stale_verified_listings(self.conn, cutoff)
        if not old:
            logger.info("No old verification data to clean up")
            return 0

        logger.info(f"Found {len(old)} listings with old verification data")
        if dry_run:
            for listing in old:
                logger.info(f"  - {listing.title} (last verified {listing.last_verified_at})")
            return 0

        for listing in old:
            delete_listing(self.conn, listing.id)
        self.conn.commit()
        logger.info(f"Deleted {len(old)} listings with old verification data")
        return len(old)
