"""Exception types raised by the crawl and verification pipeline."""

from typing import Optional


class MonitorError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(MonitorError):
    """Raised when a required setting is missing."""


# --- Crawling ---

class CrawlError(MonitorError):
    """A failure that aborts the current crawl attempt."""


class BrowserLaunchFailure(CrawlError):
    """The browser engine itself failed to start. Retryable."""


class NavigationFailure(CrawlError):
    """A listing page could not be loaded (timeout, network error)."""


class ChallengeDetected(CrawlError):
    """The response was an anti-bot interstitial instead of a listing page."""

    def __init__(self, url: str, title: str = ""):
        self.url = url
        self.title = title
        super().__init__(f"Challenge page detected at {url} (title: {title!r})")


class ElementTimeout(MonitorError):
    """Listing elements did not appear in time. Not fatal."""


class ExtractionError(MonitorError):
    """A single listing card could not be parsed."""


# --- Verification ---

class VerificationError(MonitorError):
    """Base class for per-item verification failures."""


class VerificationTransportFailure(VerificationError):
    def __init__(self, item_id: str, message: str, status_code: Optional[int] = None):
        self.item_id = item_id
        self.status_code = status_code
        super().__init__(f"Failed to fetch details for item {item_id}: {message}")

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class VerificationParseFailure(VerificationError):
    def __init__(self, item_id: str, reason, message: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Failed to parse details for item {item_id} [{reason.value}]: {message}")
