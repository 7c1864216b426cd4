"""Drive the page fetcher and parser across the result pages of one store."""

import logging
import time
from typing import Callable, Optional, Protocol

from config import MAX_PAGES_PER_SESSION, PAGE_DELAY_SECONDS
from errors import CrawlError
from models import ScrapedListing
from parsers.ebay_store import EbayStoreParser

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    def fetch_page(self, store_name: str, page_number: int) -> str: ...


class Paginator:
    """Crawl pages 1..N of a store sequentially.

    Stops after a page that has no successor, or after `max_pages` pages in
    one session. Any page failure aborts the whole crawl.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        parser: Optional[EbayStoreParser] = None,
        max_pages: int = MAX_PAGES_PER_SESSION,
        page_delay: float = PAGE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.parser = parser or EbayStoreParser()
        self.max_pages = max_pages
        self.page_delay = page_delay
        self._sleep = sleep

    def crawl(self, store_name: str) -> list[ScrapedListing]:
        all_listings: list[ScrapedListing] = []
        seen_ids: set[str] = set()

        for page_number in range(1, self.max_pages + 1):
            try:
                html = self.fetcher.fetch_page(store_name, page_number)
                page = self.parser.parse_page(html)
            except CrawlError:
                raise
            except Exception as e:
                raise CrawlError(f"Page {page_number} failed: {e}") from e

            unique = [l for l in page.listings if l.item_id not in seen_ids]
            seen_ids.update(l.item_id for l in unique)
            all_listings.extend(unique)
            logger.info(
                f"[{store_name}] Page {page_number}: {len(page.listings)} listings "
                f"({len(unique)} unique), has_next_page={page.has_next_page}"
            )

            if not page.has_next_page:
                break
            if page_number == self.max_pages:
                logger.warning(
                    f"[{store_name}] Session page cap reached ({self.max_pages} pages)"
                )
                break
            self._sleep(self.page_delay)

        logger.info(f"[{store_name}] Crawl collected {len(all_listings)} listings")
        return all_listings
