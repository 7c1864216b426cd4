# tests/unit/test_locks.py
from datetime import timedelta

from db import format_ts, get_connection, utcnow
from locks import CrawlLockManager, is_due
from models import Store


def test_second_worker_cannot_take_running_lock(conn, db_path, store_id):
    other_conn = get_connection(db_path)
    worker_a = CrawlLockManager(conn, worker_id="worker-a")
    worker_b = CrawlLockManager(other_conn, worker_id="worker-b")

    assert worker_a.try_acquire(store_id) is True
    assert worker_b.try_acquire(store_id) is False
    assert worker_a.running_count(store_id) == 1

    assert worker_a.release(store_id) is True
    assert worker_b.try_acquire(store_id) is True
    assert worker_b.get_lock(store_id)["owner_id"] == "worker-b"
    other_conn.close()


def test_only_owner_can_release(conn, store_id):
    worker_a = CrawlLockManager(conn, worker_id="worker-a")
    worker_b = CrawlLockManager(conn, worker_id="worker-b")
    worker_a.try_acquire(store_id)

    assert worker_b.release(store_id) is False
    assert worker_a.get_lock(store_id)["is_running"] == 1


def test_reacquire_by_same_owner(conn, store_id):
    worker = CrawlLockManager(conn, worker_id="worker-a")
    assert worker.try_acquire(store_id) is True
    assert worker.try_acquire(store_id) is True


def test_stale_lock_is_taken_over(conn, store_id):
    worker_a = CrawlLockManager(conn, worker_id="worker-a")
    worker_b = CrawlLockManager(conn, worker_id="worker-b", stale_after=timedelta(minutes=30))

    worker_a.try_acquire(store_id, now=utcnow() - timedelta(minutes=31))

    assert worker_b.try_acquire(store_id) is True
    assert worker_b.get_lock(store_id)["owner_id"] == "worker-b"


def test_sweep_stale_clears_only_old_locks(conn, store_id):
    from db import add_store
    fresh_store = add_store(conn, "fresh-store")
    worker = CrawlLockManager(conn, worker_id="worker-a")
    worker.try_acquire(store_id, now=utcnow() - timedelta(hours=2))
    worker.try_acquire(fresh_store)

    cleared = CrawlLockManager(conn, worker_id="janitor").sweep_stale(timedelta(minutes=30))

    assert cleared == 1
    assert worker.get_lock(store_id)["is_running"] == 0
    assert worker.get_lock(fresh_store)["is_running"] == 1


def test_release_all_only_touches_own_locks(conn, store_id):
    from db import add_store
    other_store = add_store(conn, "other-store")
    worker_a = CrawlLockManager(conn, worker_id="worker-a")
    worker_b = CrawlLockManager(conn, worker_id="worker-b")
    worker_a.try_acquire(store_id)
    worker_b.try_acquire(other_store)

    assert worker_a.release_all() == 1
    assert worker_a.get_lock(store_id)["is_running"] == 0
    assert worker_b.get_lock(other_store)["is_running"] == 1


def test_is_due():
    now = utcnow()
    never_crawled = Store(id=1, store_name="a", crawl_interval=60)
    recent = Store(id=2, store_name="b", crawl_interval=60,
                   last_crawled_at=format_ts(now - timedelta(seconds=30)))
    old = Store(id=3, store_name="c", crawl_interval=60,
                last_crawled_at=format_ts(now - timedelta(seconds=90)))

    assert is_due(never_crawled, now) is True
    assert is_due(recent, now) is False
    assert is_due(old, now) is True
