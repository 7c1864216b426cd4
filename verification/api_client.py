"""HTTP client for the item detail endpoint."""

import logging
from typing import Optional

import requests

from config import DETAIL_API_BASE_URL, DETAIL_API_TIMEOUT, EBAY_API_AUTHORIZATION
from errors import ConfigurationError, VerificationTransportFailure
from retry import RetryPolicy, detail_request_policy

logger = logging.getLogger(__name__)

DETAIL_PATH = "/experience/listing_details/v2/view_item"

# The endpoint only answers requests that look like the mobile app
_HEADERS = {
    "User-Agent": "eBayiPhone/6.227.1",
    "X-EBAY-C-TERRITORY-ID": "JP",
    "Accept-Language": "ja-JP",
    "X-EBAY-C-CULTURAL-PREF": "Currency=JPY,Timezone=Asia/Tokyo,Units=Metric",
    "Accept": "application/json;presentity=split",
    "Content-Type": "application/json",
    "X-EBAY-C-MARKETPLACE-ID": "EBAY-US",
    "ebay-ets-api-intent": "foreground",
}


class DetailApiClient:
    def __init__(
        self,
        authorization: Optional[str] = None,
        base_url: str = DETAIL_API_BASE_URL,
        timeout: int = DETAIL_API_TIMEOUT,
        session: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.authorization = authorization or EBAY_API_AUTHORIZATION
        if not self.authorization:
            raise ConfigurationError("EBAY_API_AUTHORIZATION is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(_HEADERS)
        self.session.headers["Authorization"] = f"Bearer {self.authorization}"
        self.retry_policy = retry_policy or detail_request_policy()

    def get_item_details(self, item_id: str) -> dict:
        """Fetch the raw detail payload, retrying transient failures."""
        return self.retry_policy.call(self._get_once, item_id)

    def _get_once(self, item_id: str) -> dict:
        url = f"{self.base_url}{DETAIL_PATH}"
        try:
            resp = self.session.get(url, params={"itemId": item_id}, timeout=self.timeout)
        except requests.RequestException as e:
            raise VerificationTransportFailure(item_id, str(e)) from e

        if not resp.ok:
            raise VerificationTransportFailure(
                item_id, f"HTTP {resp.status_code}: {resp.text[:200]}", resp.status_code
            )
        try:
            return resp.json()
        except ValueError as e:
            raise VerificationTransportFailure(
                item_id, f"Invalid JSON response: {e}", resp.status_code
            ) from e
