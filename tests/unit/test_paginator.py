# tests/unit/test_paginator.py
import pytest

from crawling.paginator import Paginator
from errors import CrawlError, NavigationFailure
from parsers import ParsedPage


class StubFetcher:
    def __init__(self, failures=None):
        self.failures = failures or {}
        self.pages = []

    def fetch_page(self, store_name, page_number):
        self.pages.append(page_number)
        if page_number in self.failures:
            raise self.failures[page_number]
        return f"page-{page_number}"


class StubParser:
    def __init__(self, pages):
        self.pages = pages

    def parse_page(self, html):
        return self.pages[html]


@pytest.fixture
def sleeps():
    return []


def _paginator(fetcher, pages, sleeps, **kwargs):
    return Paginator(fetcher, StubParser(pages), sleep=sleeps.append, **kwargs)


def test_stops_after_page_without_successor(make_scraped, sleeps):
    fetcher = StubFetcher()
    pages = {
        "page-1": ParsedPage([make_scraped(1), make_scraped(2)], has_next_page=True),
        "page-2": ParsedPage([make_scraped(3)], has_next_page=False),
    }

    listings = _paginator(fetcher, pages, sleeps, page_delay=1.5).crawl("shop")

    assert [l.item_id for l in listings] == ["1", "2", "3"]
    assert fetcher.pages == [1, 2]
    assert sleeps == [1.5]


def test_page_cap_ends_session(make_scraped, sleeps):
    fetcher = StubFetcher()
    pages = {f"page-{n}": ParsedPage([make_scraped(n)], has_next_page=True) for n in range(1, 10)}

    listings = _paginator(fetcher, pages, sleeps, max_pages=3).crawl("shop")

    assert fetcher.pages == [1, 2, 3]
    assert len(listings) == 3
    assert len(sleeps) == 2


def test_duplicates_across_pages_are_dropped(make_scraped, sleeps):
    pages = {
        "page-1": ParsedPage([make_scraped(1), make_scraped(2)], has_next_page=True),
        "page-2": ParsedPage([make_scraped(2), make_scraped(3)], has_next_page=False),
    }

    listings = _paginator(StubFetcher(), pages, sleeps).crawl("shop")

    assert [l.item_id for l in listings] == ["1", "2", "3"]


def test_page_failure_aborts_crawl(make_scraped, sleeps):
    fetcher = StubFetcher(failures={2: NavigationFailure("timeout")})
    pages = {"page-1": ParsedPage([make_scraped(1)], has_next_page=True)}

    with pytest.raises(NavigationFailure):
        _paginator(fetcher, pages, sleeps).crawl("shop")
    assert fetcher.pages == [1, 2]


def test_unexpected_error_is_wrapped(sleeps):
    fetcher = StubFetcher(failures={1: RuntimeError("boom")})

    with pytest.raises(CrawlError, match="Page 1 failed: boom"):
        _paginator(fetcher, {}, sleeps).crawl("shop")
