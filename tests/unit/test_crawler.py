# tests/unit/test_crawler.py
import pytest

from crawler import StoreCrawler, truncate_error
from db import add_store, get_last_crawl_log, get_listing_by_item_id, get_store
from detector import ChangeDetector
from errors import BrowserLaunchFailure, ChallengeDetected, NavigationFailure
from locks import CrawlLockManager
from models import StoreAlert
from proxies import ProxyPool
from retry import browser_launch_policy
from snapshots import InMemorySnapshotStore


@pytest.fixture
def notifier(mocker):
    return mocker.MagicMock()


@pytest.fixture
def lock_manager(conn):
    return CrawlLockManager(conn, worker_id="worker-a")


def _crawler(conn, lock_manager, notifier, paginator, fetcher_factory, **kwargs):
    return StoreCrawler(
        conn,
        lock_manager=lock_manager,
        detector=ChangeDetector(conn, InMemorySnapshotStore()),
        notifier=notifier,
        fetcher_factory=fetcher_factory,
        launch_policy=browser_launch_policy(sleep=lambda s: None),
        paginator_factory=paginator,
        **kwargs,
    )


def test_successful_crawl(conn, store_id, lock_manager, notifier, make_scraped,
                          fake_paginator, fake_fetcher):
    paginator = fake_paginator([[make_scraped("1"), make_scraped("2")]])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher)

    result = crawler.crawl_store(store_id)

    assert result.success is True
    assert result.found == 2
    assert result.new == 2
    assert paginator.crawled == ["test-store"]
    log = get_last_crawl_log(conn, store_id)
    assert log["status"] == "SUCCESS"
    assert log["found"] == 2
    assert log["completed_at"] is not None
    assert get_store(conn, store_id).last_crawled_at is not None
    assert lock_manager.get_lock(store_id)["is_running"] == 0
    # first crawl has no baseline to compare against
    notifier.notify.assert_not_called()


def test_new_items_notified_after_first_crawl(conn, store_id, lock_manager, notifier,
                                              make_scraped, fake_paginator, fake_fetcher):
    paginator = fake_paginator([
        [make_scraped("1")],
        [make_scraped("1"), make_scraped("2"), make_scraped("3")],
    ])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher)

    crawler.crawl_store(store_id)
    result = crawler.crawl_store(store_id)

    assert result.new == 2
    notifier.notify.assert_called_once_with(store_id, StoreAlert(new_item_count=2))


def test_failed_crawl_is_recorded_and_lock_released(conn, store_id, lock_manager, notifier,
                                                    fake_paginator, fake_fetcher):
    paginator = fake_paginator([NavigationFailure("Timed out loading page 2")])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher)

    result = crawler.crawl_store(store_id)

    assert result.success is False
    assert "Timed out" in result.error
    log = get_last_crawl_log(conn, store_id)
    assert log["status"] == "FAILED"
    assert log["error_message"] == "Timed out loading page 2"
    assert lock_manager.get_lock(store_id)["is_running"] == 0
    assert get_store(conn, store_id).last_crawled_at is None


def test_long_error_is_truncated(conn, store_id, lock_manager, notifier,
                                 fake_paginator, fake_fetcher):
    paginator = fake_paginator([NavigationFailure("x" * 600)])

    result = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher).crawl_store(store_id)

    assert result.error == "x" * 500 + "..."
    assert get_last_crawl_log(conn, store_id)["error_message"] == "x" * 500 + "..."


def test_truncate_error_leaves_short_messages():
    assert truncate_error("short") == "short"


def test_browser_launch_failure_is_retried(conn, store_id, lock_manager, notifier,
                                           make_scraped, fake_paginator, fake_fetcher):
    launches = []

    def flaky_factory(proxy):
        launches.append(proxy)
        if len(launches) == 1:
            raise BrowserLaunchFailure("chromium crashed")
        return fake_fetcher(proxy)

    paginator = fake_paginator([[make_scraped("1")]])

    result = _crawler(conn, lock_manager, notifier, paginator, flaky_factory).crawl_store(store_id)

    assert result.success is True
    assert len(launches) == 2


def test_skips_when_locked_elsewhere(conn, store_id, lock_manager, notifier,
                                     fake_paginator, fake_fetcher):
    CrawlLockManager(conn, worker_id="worker-b").try_acquire(store_id)
    paginator = fake_paginator([])

    result = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher).crawl_store(store_id)

    assert result.skipped is True
    assert result.success is True
    assert paginator.crawled == []
    assert get_last_crawl_log(conn, store_id) is None
    assert lock_manager.get_lock(store_id)["owner_id"] == "worker-b"


def test_skips_when_not_due(conn, lock_manager, notifier, make_scraped,
                            fake_paginator, fake_fetcher):
    store_id = add_store(conn, "slow-store", crawl_interval=3600)
    paginator = fake_paginator([[make_scraped("1")]])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher)

    assert crawler.crawl_store(store_id).skipped is False
    assert crawler.crawl_store(store_id).skipped is True


def test_unknown_and_inactive_stores_fail(conn, lock_manager, notifier,
                                          fake_paginator, fake_fetcher):
    inactive = add_store(conn, "closed-store")
    conn.execute("UPDATE stores SET is_active = 0 WHERE id = ?", (inactive,))
    conn.commit()
    crawler = _crawler(conn, lock_manager, notifier, fake_paginator([]), fake_fetcher)

    assert crawler.crawl_store(9999).success is False
    assert crawler.crawl_store(inactive).success is False


def test_challenge_blocks_proxy(conn, store_id, lock_manager, notifier,
                                fake_paginator, fake_fetcher):
    pool = ProxyPool(conn)
    proxy_id = pool.add_proxy("10.0.0.1", 8080)
    paginator = fake_paginator([ChallengeDetected("https://www.ebay.com/splashui/challenge")])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher, proxy_pool=pool)

    result = crawler.crawl_store(store_id)

    assert result.success is False
    row = conn.execute("SELECT blocked_until FROM proxies WHERE id = ?", (proxy_id,)).fetchone()
    assert row["blocked_until"] is not None
    events = [r["event_type"] for r in conn.execute(
        "SELECT event_type FROM proxy_usage_logs WHERE proxy_id = ? ORDER BY id", (proxy_id,)
    )]
    assert events == ["USED", "CHALLENGE_DETECTED"]
    assert pool.get_available_proxy() is None
    assert get_listing_by_item_id(conn, "1") is None


def test_reappearing_items_are_not_alerted_as_new(conn, store_id, lock_manager, notifier,
                                                 make_scraped, fake_paginator, fake_fetcher):
    all_items = [make_scraped(str(i)) for i in range(20)]
    paginator = fake_paginator([all_items, all_items[:10], all_items])
    crawler = _crawler(conn, lock_manager, notifier, paginator, fake_fetcher)

    crawler.crawl_store(store_id)
    crawler.crawl_store(store_id)
    result = crawler.crawl_store(store_id)

    assert result.new == 0
    assert result.updated == 10
    notifier.notify.assert_not_called()
