"""Shared parsing helpers for store search result pages."""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Placeholder price text for cards with no readable price
PRICE_UNKNOWN = "unknown price"

_PRICE_RE = re.compile(r"[\d,]+\.?\d*")
_ITEM_ID_RE = re.compile(r"/itm/(?:[^/?#]+/)?(\d+)")


def parse_price(text: Optional[str]) -> float:
    """Parse listing price text like '$1,234.56' → 1234.56.

    Returns 0 for empty text, the unknown-price marker, or anything without
    a number in it.
    """
    if not text or text.strip().lower() == PRICE_UNKNOWN:
        return 0.0
    match = _PRICE_RE.search(text)
    if not match:
        logger.debug(f"No price in {text!r}")
        return 0.0
    cleaned = match.group(0).replace(",", "")
    try:
        price = float(cleaned)
    except ValueError:
        logger.debug(f"Unparseable price {text!r}")
        return 0.0
    return price if price >= 0 else 0.0


def parse_currency(text: Optional[str]) -> str:
    """Infer a currency code from price text. Defaults to USD."""
    if not text or text.strip().lower() == PRICE_UNKNOWN:
        return "USD"
    if "円" in text or "¥" in text:
        return "JPY"
    if "$" in text or "USD" in text:
        return "USD"
    if "€" in text or "EUR" in text:
        return "EUR"
    return "USD"


def extract_item_id_from_url(url: str) -> Optional[str]:
    """Extract the numeric item id from a listing URL.

    Handles both styles:
      /itm/123456789012?hash=...        → '123456789012'
      /itm/some-title-slug/123456789012 → '123456789012'
    """
    if not url:
        return None
    match = _ITEM_ID_RE.search(urlparse(url).path)
    return match.group(1) if match else None


def normalize_image_url(src: Optional[str]) -> Optional[str]:
    if not src or src.startswith("data:"):
        return None
    return f"https:{src}" if src.startswith("//") else src
