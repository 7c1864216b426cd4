#!/usr/bin/env python3
"""Main entry point for the store listing monitor."""

import argparse
import logging
import sys
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

from config import (
    CLEANUP_MAX_AGE_DAYS,
    SNAPSHOT_MODE,
    VERIFY_BATCH_DELAY_SECONDS,
    VERIFY_BATCH_SIZE,
)
from crawler import StoreCrawler
from db import add_store, get_active_stores, get_connection, init_db
from detector import ChangeDetector
from errors import ConfigurationError
from locks import CrawlLockManager
from models import BatchResult, CrawlResult
from notifier import AlertQueueNotifier
from snapshots import DatabaseSnapshotStore, InMemorySnapshotStore, SnapshotStore
from verification import BatchVerificationProcessor, DetailApiClient, VerificationService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_snapshot_store(
    conn, memory_store: Optional[InMemorySnapshotStore] = None
) -> SnapshotStore:
    """Pick the baseline store for SNAPSHOT_MODE.

    In memory mode the caller owns `memory_store` and passes the same one to
    every cycle; without it each call starts with no baseline.
    """
    if SNAPSHOT_MODE == "memory":
        return memory_store if memory_store is not None else InMemorySnapshotStore()
    return DatabaseSnapshotStore(conn)


def build_crawler(conn, memory_store: Optional[InMemorySnapshotStore] = None) -> StoreCrawler:
    return StoreCrawler(
        conn,
        lock_manager=CrawlLockManager(conn),
        detector=ChangeDetector(conn, build_snapshot_store(conn, memory_store)),
        notifier=AlertQueueNotifier(conn),
    )


def build_batch_processor(conn) -> BatchVerificationProcessor:
    service = VerificationService(DetailApiClient())
    return BatchVerificationProcessor(conn, service, notifier=AlertQueueNotifier(conn))


def crawl_store(store_id: int) -> CrawlResult:
    """Crawl a single store and return the result."""
    conn = get_connection()
    try:
        return build_crawler(conn).crawl_store(store_id)
    finally:
        conn.close()


def crawl_all(memory_store: Optional[InMemorySnapshotStore] = None) -> list[CrawlResult]:
    """Crawl every active store that is due, one after another."""
    conn = get_connection()
    results = []
    try:
        CrawlLockManager(conn).sweep_stale()
        crawler = build_crawler(conn, memory_store)
        for store in get_active_stores(conn):
            try:
                results.append(crawler.crawl_store(store.id))
            except Exception as e:
                logger.error(f"Failed to crawl {store.store_name}: {e}")
    finally:
        conn.close()

    crawled = [r for r in results if not r.skipped]
    logger.info(
        f"=== Crawl cycle done. {len(crawled)} stores crawled, "
        f"{sum(1 for r in crawled if not r.success)} failed, "
        f"{sum(r.new for r in crawled)} new, {sum(r.sold for r in crawled)} pending ==="
    )
    return results


def process_pending_verifications(
    batch_size: int = VERIFY_BATCH_SIZE, delay: float = VERIFY_BATCH_DELAY_SECONDS
) -> BatchResult:
    conn = get_connection()
    try:
        return build_batch_processor(conn).process_pending(batch_size, delay)
    finally:
        conn.close()


def retry_failed_verifications() -> BatchResult:
    conn = get_connection()
    try:
        return build_batch_processor(conn).retry_failed()
    finally:
        conn.close()


def show_stats():
    conn = get_connection()
    try:
        # stats need no API token
        processor = BatchVerificationProcessor(conn, service=None)
        health = processor.health_check()
    finally:
        conn.close()

    logger.info("Verification stats:")
    for key, count in health["stats"].items():
        logger.info(f"  {key}: {count}")
    logger.info(f"  undelivered alerts: {health['alert_backlog']}")
    logger.info(f"Health: {health['status']}")
    for issue in health["issues"]:
        logger.warning(f"  {issue}")


def cleanup(execute: bool = False) -> int:
    conn = get_connection()
    try:
        processor = BatchVerificationProcessor(conn, service=None)
        return processor.cleanup_old_verifications(
            timedelta(days=CLEANUP_MAX_AGE_DAYS), dry_run=not execute
        )
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Store listing monitor")
    parser.add_argument("--store", type=int, help="Crawl a single store by id")
    parser.add_argument(
        "--once", action="store_true", help="Run one crawl cycle and exit (no scheduler)"
    )
    parser.add_argument(
        "--verify", action="store_true", help="Verify listings pending after removal"
    )
    parser.add_argument(
        "--retry-errors", action="store_true", help="Re-verify listings whose verification failed"
    )
    parser.add_argument("--stats", action="store_true", help="Show verification stats and health")
    parser.add_argument("--add-store", type=str, metavar="NAME", help="Register a store to monitor")
    parser.add_argument(
        "--interval", type=int, help="Crawl interval in seconds for --add-store"
    )
    parser.add_argument(
        "--cleanup", action="store_true",
        help="List ended or sold-out listings with old verification data (ACTIVE rows are kept)",
    )
    parser.add_argument(
        "--execute", action="store_true", help="With --cleanup, actually delete them"
    )
    args = parser.parse_args()

    init_db()

    try:
        if args.add_store:
            conn = get_connection()
            kwargs = {"crawl_interval": args.interval} if args.interval else {}
            store_id = add_store(conn, args.add_store, **kwargs)
            conn.close()
            logger.info(f"Added store {args.add_store} with id {store_id}")
        elif args.stats:
            show_stats()
        elif args.cleanup:
            deleted = cleanup(execute=args.execute)
            logger.info(f"=== Cleanup done. {deleted} listings deleted ===")
        elif args.verify or args.retry_errors:
            if args.verify:
                process_pending_verifications()
            if args.retry_errors:
                retry_failed_verifications()
        elif args.store:
            result = crawl_store(args.store)
            logger.info(
                f"=== Done. success={result.success} found={result.found} new={result.new} "
                f"updated={result.updated} pending={result.sold} ({result.duration_ms}ms) ==="
            )
            if not result.success:
                sys.exit(1)
        elif args.once:
            crawl_all()
        else:
            # Run with scheduler
            from scheduler import run_scheduler
            run_scheduler()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
