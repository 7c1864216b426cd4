"""Listing page parsers."""

from parsers.base import PRICE_UNKNOWN, parse_currency, parse_price
from parsers.ebay_store import EbayStoreParser, ParsedPage

__all__ = [
    "EbayStoreParser",
    "ParsedPage",
    "PRICE_UNKNOWN",
    "parse_currency",
    "parse_price",
]
