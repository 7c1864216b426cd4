# tests/conftest.py
import threading

import pytest

from db import add_store, get_connection, init_db, insert_listing, now_utc, update_listing
from models import Listing, ListingStatus, ScrapedListing, VerificationStatus


@pytest.fixture
def db_path(tmp_path):
    """Fresh sqlite database file per test"""
    path = str(tmp_path / "listings.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store_id(conn):
    # interval 0 so back-to-back crawls are always due
    return add_store(conn, "test-store", crawl_interval=0)


@pytest.fixture
def make_scraped():
    def _make(item_id, title=None, price_text="$10.00"):
        return ScrapedListing(
            item_id=str(item_id),
            title=title or f"Item {item_id}",
            price_text=price_text,
            url=f"https://www.ebay.com/itm/{item_id}",
        )
    return _make


@pytest.fixture
def removed_listing(conn, store_id):
    """Insert a listing already marked REMOVED/PENDING and return it"""
    def _make(item_id, last_seen_at=None):
        listing = Listing(
            store_id=store_id,
            external_item_id=str(item_id),
            title=f"Item {item_id}",
            price=10.0,
            listing_url=f"https://www.ebay.com/itm/{item_id}",
        )
        listing_id = insert_listing(conn, listing, last_seen_at or now_utc())
        update_listing(
            conn, listing_id,
            status=ListingStatus.REMOVED,
            verification_status=VerificationStatus.PENDING,
        )
        conn.commit()
        listing.id = listing_id
        listing.status = ListingStatus.REMOVED
        listing.verification_status = VerificationStatus.PENDING
        return listing
    return _make


@pytest.fixture
def detail_payload():
    def _payload(status="IN_STOCK", available=1, sold=0, remaining=1):
        return {
            "modules": {
                "VLS": {
                    "listing": {
                        "itemVariations": [{
                            "quantityAndAvailabilityByLogisticsPlans": [{
                                "quantityAndAvailability": {
                                    "availabilityStatus": status,
                                    "availableQuantity": available,
                                    "soldQuantity": sold,
                                    "remainingQuantity": remaining,
                                }
                            }]
                        }]
                    }
                }
            }
        }
    return _payload


class FakeDetailClient:
    """Stands in for DetailApiClient. Values are payloads or exceptions to raise."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self._lock = threading.Lock()

    def get_item_details(self, item_id):
        with self._lock:
            self.calls.append(item_id)
        response = self.responses[item_id]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_client():
    return FakeDetailClient


class FakePaginator:
    """Returns canned crawl results in order. Exceptions are raised."""

    def __init__(self, results):
        self.results = list(results)
        self.crawled = []

    def __call__(self, fetcher):
        return self

    def crawl(self, store_name):
        self.crawled.append(store_name)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeFetcher:
    def __init__(self, proxy=None):
        self.proxy = proxy
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True


@pytest.fixture
def fake_paginator():
    return FakePaginator


@pytest.fixture
def fake_fetcher():
    return FakeFetcher
