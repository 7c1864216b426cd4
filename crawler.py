"""Crawl one store end to end: lock, fetch pages, diff, record the outcome."""

import logging
import sqlite3
import time
from typing import Callable, Optional

from config import ERROR_MESSAGE_MAX_LENGTH, USE_PROXY
from crawling.page_fetcher import PlaywrightPageFetcher
from crawling.paginator import Paginator
from db import finish_crawl_log, get_store, now_utc, set_store_crawled, start_crawl_log
from detector import ChangeDetector
from errors import ChallengeDetected
from locks import CrawlLockManager, is_due
from models import CrawlLogStatus, CrawlResult, ScrapedListing, Store, StoreAlert
from notifier import Notifier
from proxies import CHALLENGE_DETECTED, ERROR, SUCCESS, USED, Proxy, ProxyPool
from retry import RetryPolicy, browser_launch_policy

logger = logging.getLogger(__name__)


def truncate_error(message: str, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


class StoreCrawler:
    def __init__(
        self,
        conn: sqlite3.Connection,
        lock_manager: CrawlLockManager,
        detector: ChangeDetector,
        notifier: Optional[Notifier] = None,
        fetcher_factory: Callable[[Optional[Proxy]], PlaywrightPageFetcher] = PlaywrightPageFetcher,
        launch_policy: Optional[RetryPolicy] = None,
        proxy_pool: Optional[ProxyPool] = None,
        paginator_factory: Callable[..., Paginator] = Paginator,
    ):
        self.conn = conn
        self.lock_manager = lock_manager
        self.detector = detector
        self.notifier = notifier
        self.fetcher_factory = fetcher_factory
        self.launch_policy = launch_policy or browser_launch_policy()
        if proxy_pool is None and USE_PROXY:
            proxy_pool = ProxyPool(conn)
        self.proxy_pool = proxy_pool
        self.paginator_factory = paginator_factory

    def crawl_store(self, store_id: int) -> CrawlResult:
        """Run one crawl of a store.

        Never raises for crawl failures: they are recorded on the crawl log
        and returned in the result. The store lock is always released.
        """
        started = time.monotonic()

        store = get_store(self.conn, store_id)
        if store is None:
            logger.error(f"Store {store_id} not found")
            return CrawlResult(success=False, error=f"Store {store_id} not found")
        if not store.is_active:
            logger.info(f"[{store.store_name}] Store is inactive, not crawling")
            return CrawlResult(success=False, error=f"Store {store_id} is inactive")
        if not is_due(store):
            logger.info(f"[{store.store_name}] Crawled recently, skipping")
            return CrawlResult(success=True, skipped=True)
        if not self.lock_manager.try_acquire(store_id):
            return CrawlResult(success=True, skipped=True)

        log_id = None
        try:
            log_id = start_crawl_log(self.conn, store_id, now_utc())
            logger.info(f"--- Crawling {store.store_name} (store {store_id}) ---")

            scraped = self.launch_policy.call(self._collect, store)
            summary = self.detector.process_listings(store_id, scraped, label=store.store_name)

            set_store_crawled(self.conn, store_id, now_utc())
            finish_crawl_log(
                self.conn, log_id, CrawlLogStatus.SUCCESS,
                found=summary.found, new=summary.new,
                updated=summary.updated, sold=summary.sold,
            )

            if self.notifier and summary.new and not summary.first_crawl:
                self.notifier.notify(store_id, StoreAlert(new_item_count=summary.new))

            return CrawlResult(
                success=True,
                found=summary.found,
                new=summary.new,
                updated=summary.updated,
                sold=summary.sold,
                duration_ms=_elapsed_ms(started),
            )
        except Exception as e:
            self.conn.rollback()
            message = truncate_error(str(e) or type(e).__name__)
            logger.error(f"[{store.store_name}] Crawl failed: {message}")
            if log_id is not None:
                finish_crawl_log(self.conn, log_id, CrawlLogStatus.FAILED, error_message=message)
            return CrawlResult(success=False, error=message, duration_ms=_elapsed_ms(started))
        finally:
            self.lock_manager.release(store_id)

    def _collect(self, store: Store) -> list[ScrapedListing]:
        """Launch a fresh browser and crawl every page of the store."""
        proxy = self.proxy_pool.get_available_proxy() if self.proxy_pool else None
        if proxy:
            self.proxy_pool.log_usage(proxy.id, USED, store_id=store.id)

        try:
            with self.fetcher_factory(proxy) as fetcher:
                listings = self.paginator_factory(fetcher).crawl(store.store_name)
        except ChallengeDetected as e:
            if proxy:
                self.proxy_pool.mark_blocked(proxy.id)
                self.proxy_pool.log_usage(
                    proxy.id, CHALLENGE_DETECTED, store_id=store.id, url=e.url, error_message=str(e)
                )
            raise
        except Exception as e:
            if proxy:
                self.proxy_pool.log_usage(proxy.id, ERROR, store_id=store.id, error_message=str(e))
            raise

        if proxy:
            self.proxy_pool.log_usage(proxy.id, SUCCESS, store_id=store.id)
        return listings


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
