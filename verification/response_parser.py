"""Staged parsing and classification of item detail responses.

Each nesting level of the payload is checked separately so a failure names
the stage that was missing instead of surfacing as a KeyError.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from errors import VerificationParseFailure
from models import VerificationStatus
from verification.models import ItemDetails, QuantityAndAvailability


class ParseFailureReason(str, Enum):
    NOT_AN_OBJECT = "NOT_AN_OBJECT"
    MISSING_MODULES = "MISSING_MODULES"
    MISSING_VLS = "MISSING_VLS"
    MISSING_LISTING = "MISSING_LISTING"
    NO_ITEM_VARIATIONS = "NO_ITEM_VARIATIONS"
    NO_LOGISTICS_PLANS = "NO_LOGISTICS_PLANS"
    MISSING_QUANTITY = "MISSING_QUANTITY"
    INVALID_QUANTITY = "INVALID_QUANTITY"


@dataclass
class ParseResult:
    item_id: str
    details: Optional[ItemDetails] = None
    reason: Optional[ParseFailureReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.details is not None

    def unwrap(self) -> ItemDetails:
        if self.details is None:
            raise VerificationParseFailure(self.item_id, self.reason, self.message)
        return self.details


def _failure(item_id: str, reason: ParseFailureReason, message: str) -> ParseResult:
    return ParseResult(item_id=item_id, reason=reason, message=message)


def _first(value: Any) -> Optional[dict]:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def parse_item_details(item_id: str, payload: Any) -> ParseResult:
    """Walk modules.VLS.listing.itemVariations[0] down to the quantity leaf."""
    if not isinstance(payload, dict):
        return _failure(item_id, ParseFailureReason.NOT_AN_OBJECT, "Response is not a JSON object")

    modules = payload.get("modules")
    if not isinstance(modules, dict):
        return _failure(item_id, ParseFailureReason.MISSING_MODULES, "modules not found in response")

    vls = modules.get("VLS")
    if not isinstance(vls, dict):
        return _failure(item_id, ParseFailureReason.MISSING_VLS, "VLS module not found in response")

    listing = vls.get("listing")
    if not isinstance(listing, dict):
        return _failure(item_id, ParseFailureReason.MISSING_LISTING, "listing not found in VLS module")

    variation = _first(listing.get("itemVariations"))
    if variation is None:
        return _failure(item_id, ParseFailureReason.NO_ITEM_VARIATIONS, "Item variations not found")

    plan = _first(variation.get("quantityAndAvailabilityByLogisticsPlans"))
    if plan is None:
        return _failure(
            item_id, ParseFailureReason.NO_LOGISTICS_PLANS,
            "Quantity and availability information not found",
        )

    quantity = plan.get("quantityAndAvailability")
    if not isinstance(quantity, dict):
        return _failure(item_id, ParseFailureReason.MISSING_QUANTITY, "quantityAndAvailability not found")

    try:
        leaf = QuantityAndAvailability.model_validate(quantity)
    except ValidationError as e:
        return _failure(item_id, ParseFailureReason.INVALID_QUANTITY, str(e))

    return ParseResult(item_id=item_id, details=ItemDetails.from_quantities(item_id, leaf))


def classify(details: ItemDetails) -> tuple[VerificationStatus, str]:
    """Map availability and quantities to a verification status.

    Precedence: ended listing, confirmed sale, out of stock, live.
    """
    status = details.availability_status
    avail = details.available_quantity
    remaining = details.remaining_quantity
    sold = details.sold_quantity

    if status in ("ENDED", "COMPLETED"):
        return VerificationStatus.LISTING_ENDED, "Listing has ended"

    if avail == 0 and remaining == 0 and sold > 0:
        return VerificationStatus.SOLD_CONFIRMED, f"Item sold (sold: {sold}, stock: 0)"

    if status == "OUT_OF_STOCK" or (avail == 0 and remaining == 0):
        return VerificationStatus.OUT_OF_STOCK, "Out of stock, hidden from the store listing"

    if avail > 0 or remaining > 0:
        return (
            VerificationStatus.VERIFIED,
            f"Still on sale (available: {avail}, remaining: {remaining}, sold: {sold})",
        )

    # only reached with negative quantities
    return (
        VerificationStatus.VERIFIED,
        f"Indeterminate (status: {status}, available: {avail}, remaining: {remaining})",
    )
