# tests/integration/test_crawl_and_verify.py
from crawler import StoreCrawler
from db import get_last_crawl_log, get_listing_by_item_id, get_unsent_alerts
from detector import ChangeDetector
from locks import CrawlLockManager
from models import ListingStatus, VerificationStatus
from notifier import AlertQueueNotifier
from retry import browser_launch_policy
from snapshots import DatabaseSnapshotStore
from verification.batch import BatchVerificationProcessor
from verification.service import VerificationService


def test_removed_items_are_resolved_to_sold_or_active(
    conn, store_id, make_scraped, fake_paginator, fake_fetcher, fake_client, detail_payload
):
    first = [make_scraped(str(1000 + i)) for i in range(100)]
    # items 1000 and 1001 vanish, three new ones appear
    second = first[2:] + [make_scraped(str(2000 + i)) for i in range(3)]

    notifier = AlertQueueNotifier(conn)
    lock_manager = CrawlLockManager(conn, worker_id="worker-a")
    crawler = StoreCrawler(
        conn,
        lock_manager=lock_manager,
        detector=ChangeDetector(conn, DatabaseSnapshotStore(conn)),
        notifier=notifier,
        fetcher_factory=fake_fetcher,
        launch_policy=browser_launch_policy(sleep=lambda s: None),
        paginator_factory=fake_paginator([first, second]),
    )

    initial = crawler.crawl_store(store_id)
    assert initial.success and initial.new == 100

    result = crawler.crawl_store(store_id)

    assert result.success
    assert result.found == 101
    assert result.new == 3
    assert result.sold == 2
    assert get_last_crawl_log(conn, store_id)["sold"] == 2
    for item_id in ("1000", "1001"):
        listing = get_listing_by_item_id(conn, item_id)
        assert listing.status == ListingStatus.REMOVED
        assert listing.verification_status == VerificationStatus.PENDING
    assert lock_manager.get_lock(store_id)["is_running"] == 0

    client = fake_client({
        "1000": detail_payload("OUT_OF_STOCK", available=0, sold=1, remaining=0),
        "1001": detail_payload("IN_STOCK", available=1, sold=0, remaining=1),
    })
    processor = BatchVerificationProcessor(
        conn, VerificationService(client), notifier=notifier, sleep=lambda s: None
    )

    batch = processor.process_pending()

    assert batch.processed == 2
    assert batch.sold_ids == ["1000"]
    sold = get_listing_by_item_id(conn, "1000")
    assert sold.status == ListingStatus.SOLD
    assert sold.verification_status == VerificationStatus.SOLD_CONFIRMED
    assert sold.sold_at is not None
    live = get_listing_by_item_id(conn, "1001")
    assert live.status == ListingStatus.ACTIVE
    assert live.verification_status == VerificationStatus.VERIFIED

    alerts = get_unsent_alerts(conn, store_id)
    assert [(a["alert_type"], a["payload"]) for a in alerts] == [
        ("new", {"new_item_count": 3}),
        ("sold", {"sold_item_ids": ["1000"]}),
    ]
