"""Parser for eBay store search result pages."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from bs4 import BeautifulSoup, Tag

from config import FULL_PAGE_SIZE
from errors import ExtractionError
from models import ScrapedListing
from parsers.base import (
    PRICE_UNKNOWN,
    extract_item_id_from_url,
    normalize_image_url,
)

logger = logging.getLogger(__name__)

TITLE_SELECTOR = ".s-card__title, .s-item__title"

# Promotional cards mixed into the result grid
PROMO_TITLE_MARKERS = (
    "Shop on eBay",
    "Shop eBay",
    "eBay Stores",
    "Sponsored",
    "Advertisement",
)

PRICE_SELECTORS = (
    ".s-card__price",
    ".s-item__price",
    "span.su-styled-text.primary.bold.large-1.s-card__price",
    ".su-styled-text.s-card__price",
    '[class*="s-card__price"]',
    '[class*="price"]',
)

NEXT_PAGE_SELECTORS = (
    ".pagination__next",
    'a[aria-label="Next page"]',
)


@dataclass
class ParsedPage:
    listings: list[ScrapedListing] = field(default_factory=list)
    has_next_page: bool = False


def _closest(el: Tag, classes: tuple[str, ...]) -> Optional[Tag]:
    """Nearest ancestor (or the element itself) carrying any of the classes."""
    node = el
    while isinstance(node, Tag):
        if set(node.get("class") or []) & set(classes):
            return node
        node = node.parent
    return None


class EbayStoreParser:
    """
    Store search grid: li.s-card / li.s-item cards.
    Title: .s-card__title or .s-item__title inside the item link
    URL: https://www.ebay.com/itm/{item_id}?...
    Price: .s-card__price / .s-item__price, e.g. "$1,234.56" or "JPY 12,000"
    """

    def parse_page(self, html: str) -> ParsedPage:
        soup = BeautifulSoup(html, "lxml")
        listings = self.parse_listings(soup)
        return ParsedPage(
            listings=listings,
            has_next_page=self.has_next_page(soup, len(listings)),
        )

    def parse_listings(self, soup: BeautifulSoup) -> list[ScrapedListing]:
        listings = []
        for title_el in soup.select(TITLE_SELECTOR):
            try:
                listing = self._parse_card(title_el)
                if listing:
                    listings.append(listing)
            except Exception as e:
                logger.warning(f"Failed to parse listing card: {e}")
        return listings

    def _parse_card(self, title_el: Tag) -> Optional[ScrapedListing]:
        title = title_el.get_text(" ", strip=True)
        if not title or any(marker in title for marker in PROMO_TITLE_MARKERS):
            return None

        link_el = title_el if title_el.name == "a" else title_el.find_parent("a")
        href = link_el.get("href", "") if link_el else ""
        if "/itm/" not in href:
            return None

        item_id = extract_item_id_from_url(href)
        if not item_id:
            raise ExtractionError(f"No item id in listing link {href!r}")

        card = _closest(title_el, ("s-card", "s-item"))
        price_text = PRICE_UNKNOWN
        condition = None
        image_url = None
        if card is not None:
            for selector in PRICE_SELECTORS:
                price_el = card.select_one(selector)
                text = price_el.get_text(" ", strip=True) if price_el else ""
                if text:
                    price_text = text
                    break

            condition_el = card.select_one(".s-item__condition, .s-card__subtitle")
            if condition_el:
                condition = condition_el.get_text(" ", strip=True) or None

            img = card.select_one(".s-item__image img, .s-card__image img, img")
            if img:
                image_url = normalize_image_url(img.get("src") or img.get("data-src"))

        return ScrapedListing(
            item_id=item_id,
            title=title,
            price_text=price_text,
            url=href,
            condition=condition,
            image_url=image_url,
        )

    @staticmethod
    def has_next_page(soup: BeautifulSoup, listing_count: int) -> bool:
        """Whether another result page follows this one.

        A short page is always the last one, whatever the pagination
        controls say. A full page continues only with an enabled next control.
        """
        if listing_count < FULL_PAGE_SIZE:
            logger.debug(f"Page has {listing_count} < {FULL_PAGE_SIZE} listings, last page")
            return False

        for selector in NEXT_PAGE_SELECTORS:
            for el in soup.select(selector):
                classes = el.get("class") or []
                if "pagination__next--disabled" in classes:
                    continue
                if el.get("aria-disabled") == "true" or el.has_attr("disabled"):
                    continue
                return True
        return False
