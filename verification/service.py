"""Resolve whether a listing that vanished from its store was actually sold."""

import logging
import sqlite3
from typing import Optional

from config import REMOVAL_POLICY
from db import delete_listing, log_listing_change, now_utc, update_listing
from errors import ConfigurationError
from models import Listing, ListingStatus, VerificationOutcome, VerificationStatus
from verification.api_client import DetailApiClient
from verification.response_parser import classify, parse_item_details

logger = logging.getLogger(__name__)

REMOVAL_POLICIES = ("retain", "delete")

# Listing status implied by each non-sold verification result under 'retain'
_RETAINED_STATUS = {
    VerificationStatus.VERIFIED: ListingStatus.ACTIVE,
    VerificationStatus.OUT_OF_STOCK: ListingStatus.ACTIVE,
    VerificationStatus.LISTING_ENDED: ListingStatus.ENDED,
}


class VerificationService:
    def __init__(self, api_client: DetailApiClient, removal_policy: str = REMOVAL_POLICY):
        if removal_policy not in REMOVAL_POLICIES:
            raise ConfigurationError(
                f"REMOVAL_POLICY must be one of {REMOVAL_POLICIES}, got {removal_policy!r}"
            )
        self.api_client = api_client
        self.removal_policy = removal_policy

    def verify(self, item_id: str) -> VerificationOutcome:
        """Fetch, parse and classify one item. Never raises.

        Safe to call from worker threads: touches the network only.
        """
        try:
            payload = self.api_client.get_item_details(item_id)
            details = parse_item_details(item_id, payload).unwrap()
        except Exception as e:
            logger.warning(f"Verification failed for item {item_id}: {e}")
            return VerificationOutcome(
                item_id=item_id,
                status=VerificationStatus.ERROR,
                reason="verification failed",
                error=str(e),
            )

        status, reason = classify(details)
        return VerificationOutcome(
            item_id=item_id,
            status=status,
            reason=reason,
            availability_status=details.availability_status,
            sold_qty=details.sold_quantity,
            available_qty=details.available_quantity,
            remaining_qty=details.remaining_quantity,
        )

    def apply_outcome(
        self,
        conn: sqlite3.Connection,
        listing: Listing,
        outcome: VerificationOutcome,
        now: Optional[str] = None,
    ) -> Optional[ListingStatus]:
        """Write a verification outcome to the listing row.

        Returns the listing's new status, or None if the row was deleted.
        """
        now = now or now_utc()

        if outcome.status == VerificationStatus.ERROR:
            update_listing(
                conn,
                listing.id,
                verification_status=VerificationStatus.ERROR,
                verification_error=outcome.error or outcome.reason,
                last_verified_at=now,
            )
            conn.commit()
            return listing.status

        quantities = dict(
            last_sold_qty=outcome.sold_qty,
            last_available_qty=outcome.available_qty,
            last_remaining_qty=outcome.remaining_qty,
            last_verified_at=now,
            verification_error=None,
        )

        if outcome.status == VerificationStatus.SOLD_CONFIRMED:
            new_status = ListingStatus.SOLD
            update_listing(
                conn, listing.id,
                status=new_status,
                verification_status=outcome.status,
                sold_at=now,
                **quantities,
            )
        elif self.removal_policy == "delete":
            delete_listing(conn, listing.id)
            conn.commit()
            logger.info(
                f"Deleted listing {listing.external_item_id} ({outcome.status.value}: {outcome.reason})"
            )
            return None
        else:
            new_status = _RETAINED_STATUS[outcome.status]
            update_listing(
                conn, listing.id,
                status=new_status,
                verification_status=outcome.status,
                **quantities,
            )

        if new_status != listing.status:
            log_listing_change(conn, listing.id, "status", listing.status.value, new_status.value)
        conn.commit()
        logger.info(
            f"Item {listing.external_item_id}: {outcome.status.value} -> {new_status.value} "
            f"({outcome.reason})"
        )
        return new_status
