"""Data models for the store listing monitor."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    ENDED = "ENDED"
    REMOVED = "REMOVED"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    SOLD_CONFIRMED = "SOLD_CONFIRMED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    LISTING_ENDED = "LISTING_ENDED"
    ERROR = "ERROR"


class CrawlLogStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Store:
    id: int
    store_name: str
    store_url: Optional[str] = None
    is_active: bool = True
    crawl_interval: int = 60  # seconds
    last_crawled_at: Optional[str] = None


@dataclass
class ScrapedListing:
    """One listing card as it appears on a store search page."""

    item_id: str
    title: str
    price_text: str
    url: str
    condition: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Listing:
    store_id: int
    external_item_id: str
    title: str
    price: float = 0.0
    currency: str = "USD"
    condition: Optional[str] = None
    image_url: Optional[str] = None
    listing_url: Optional[str] = None
    status: ListingStatus = ListingStatus.ACTIVE
    verification_status: VerificationStatus = VerificationStatus.VERIFIED
    id: Optional[int] = None
    first_seen_at: Optional[str] = None
    last_seen_at: Optional[str] = None
    sold_at: Optional[str] = None
    last_verified_at: Optional[str] = None
    verification_error: Optional[str] = None
    last_sold_qty: Optional[int] = None
    last_available_qty: Optional[int] = None
    last_remaining_qty: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "Listing":
        data = dict(row)
        return cls(
            id=data["id"],
            store_id=data["store_id"],
            external_item_id=data["external_item_id"],
            title=data["title"],
            price=data["price"] or 0.0,
            currency=data["currency"] or "USD",
            condition=data.get("condition"),
            image_url=data.get("image_url"),
            listing_url=data.get("listing_url"),
            status=ListingStatus(data["status"]),
            verification_status=VerificationStatus(data["verification_status"]),
            first_seen_at=data.get("first_seen_at"),
            last_seen_at=data.get("last_seen_at"),
            sold_at=data.get("sold_at"),
            last_verified_at=data.get("last_verified_at"),
            verification_error=data.get("verification_error"),
            last_sold_qty=data.get("last_sold_qty"),
            last_available_qty=data.get("last_available_qty"),
            last_remaining_qty=data.get("last_remaining_qty"),
        )


@dataclass
class CrawlResult:
    success: bool
    found: int = 0
    new: int = 0
    updated: int = 0
    sold: int = 0  # removals marked pending verification
    duration_ms: int = 0
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class VerificationOutcome:
    item_id: str
    status: VerificationStatus
    reason: str = ""
    availability_status: Optional[str] = None
    sold_qty: Optional[int] = None
    available_qty: Optional[int] = None
    remaining_qty: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_sold(self) -> bool:
        return self.status == VerificationStatus.SOLD_CONFIRMED


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    sold_ids: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)


@dataclass
class StoreAlert:
    new_item_count: int = 0
    sold_item_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
