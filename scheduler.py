"""APScheduler wrapper for the crawl and verification cycles."""

import logging
import signal
import sys
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler

from config import CRAWL_CYCLE_SECONDS, VERIFY_INTERVAL_MINUTES, WORKER_ID
from db import get_connection
from locks import CrawlLockManager
from snapshots import InMemorySnapshotStore

logger = logging.getLogger(__name__)


def _crawl_job(memory_store: Optional[InMemorySnapshotStore] = None):
    """Job function called by scheduler."""
    from scraper import crawl_all
    try:
        crawl_all(memory_store)
    except Exception as e:
        logger.error(f"Scheduled crawl failed: {e}")


def _verify_job():
    from scraper import process_pending_verifications, retry_failed_verifications
    logger.info("=== Scheduled verification starting ===")
    try:
        result = process_pending_verifications()
        retried = retry_failed_verifications()
        logger.info(
            f"=== Scheduled verification done. {result.processed} verified "
            f"({len(result.sold_ids)} sold), {retried.processed} retried ==="
        )
    except Exception as e:
        logger.error(f"Scheduled verification failed: {e}")


def release_worker_locks() -> int:
    conn = get_connection()
    try:
        return CrawlLockManager(conn, worker_id=WORKER_ID).release_all()
    finally:
        conn.close()


def run_scheduler():
    """Start the blocking scheduler."""
    # baselines for SNAPSHOT_MODE=memory, kept across crawl cycles
    memory_store = InMemorySnapshotStore()
    scheduler = BlockingScheduler()
    scheduler.add_job(
        _crawl_job,
        "interval",
        args=[memory_store],
        seconds=CRAWL_CYCLE_SECONDS,
        id="store_crawler",
        name="Store Crawler",
        coalesce=True,
    )
    scheduler.add_job(
        _verify_job,
        "interval",
        minutes=VERIFY_INTERVAL_MINUTES,
        id="removal_verifier",
        name="Removal Verifier",
        coalesce=True,
    )

    def shutdown(signum, frame):
        logger.info("Shutting down scheduler...")
        released = release_worker_locks()
        logger.info(f"Released {released} crawl locks held by {WORKER_ID}")
        scheduler.shutdown(wait=False)
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    logger.info(
        f"Scheduler started as {WORKER_ID}. Crawling every {CRAWL_CYCLE_SECONDS}s, "
        f"verifying every {VERIFY_INTERVAL_MINUTES} minutes. Press Ctrl+C to stop."
    )
    # Run immediately on start, then schedule
    _crawl_job(memory_store)
    scheduler.start()
