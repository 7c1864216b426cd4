"""Render store search pages in a headless Chromium with basic anti-detection."""

import logging
import time
from typing import Callable, Optional
from urllib.parse import quote

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright
from playwright_stealth import Stealth

from config import (
    BROWSER_LAUNCH_ARGS,
    ELEMENT_TIMEOUT_MS,
    HEADLESS,
    NAVIGATION_TIMEOUT_MS,
    PAGE_SETTLE_SECONDS,
    SEARCH_URL_TEMPLATE,
    USER_AGENT,
)
from errors import BrowserLaunchFailure, ChallengeDetected, ElementTimeout, NavigationFailure
from parsers.ebay_store import TITLE_SELECTOR
from proxies import Proxy

logger = logging.getLogger(__name__)

CHALLENGE_URL_MARKERS = ("/splashui/challenge", "/splashui/captcha", "captcha", "/challenge")
CHALLENGE_TITLE_MARKERS = (
    "pardon our interruption",
    "security measure",
    "access denied",
    "robot check",
    "verify you are a human",
)


def build_search_url(store_name: str, page: int) -> str:
    return SEARCH_URL_TEMPLATE.format(store_name=quote(store_name), page=page)


def is_challenge_page(url: str, title: str) -> bool:
    """Whether a loaded page is an anti-bot interstitial rather than results."""
    url_l = (url or "").lower()
    title_l = (title or "").lower()
    return (
        any(marker in url_l for marker in CHALLENGE_URL_MARKERS)
        or any(marker in title_l for marker in CHALLENGE_TITLE_MARKERS)
    )


def should_block_request(resource_type: str, url: str) -> bool:
    """Fonts and audio/video media are never needed to read listings."""
    if resource_type == "font":
        return True
    url_l = url.lower()
    return resource_type == "media" and ("video" in url_l or "audio" in url_l)


def _route_handler(route):
    request = route.request
    if should_block_request(request.resource_type, request.url):
        route.abort()
    else:
        route.continue_()


class PlaywrightPageFetcher:
    """One browser engine instance holding one page for a whole crawl.

    Pages are fetched sequentially on the same page object so cookies and
    session state carry over between result pages. Use as a context manager.
    """

    def __init__(
        self,
        proxy: Optional[Proxy] = None,
        headless: bool = HEADLESS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.proxy = proxy
        self.headless = headless
        self._sleep = sleep
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    def __enter__(self) -> "PlaywrightPageFetcher":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        """Launch Chromium. Raises BrowserLaunchFailure if the engine won't start."""
        try:
            self._playwright = sync_playwright().start()
            launch_kwargs = {"headless": self.headless, "args": BROWSER_LAUNCH_ARGS}
            if self.proxy:
                launch_kwargs["proxy"] = self.proxy.to_playwright()
            self._browser = self._playwright.chromium.launch(**launch_kwargs)
            self._context = self._browser.new_context(
                user_agent=USER_AGENT,
                locale="en-US",
                viewport={"width": 1366, "height": 900},
            )
            Stealth().apply_stealth_sync(self._context)
            self._page = self._context.new_page()
            self._page.set_default_timeout(NAVIGATION_TIMEOUT_MS)
            self._page.set_default_navigation_timeout(NAVIGATION_TIMEOUT_MS)
            self._page.route("**/*", _route_handler)
        except PlaywrightError as e:
            self.close()
            raise BrowserLaunchFailure(f"Browser launch failed: {e}") from e

    def close(self):
        for name in ("_context", "_browser"):
            resource = getattr(self, name)
            if resource is None:
                continue
            try:
                resource.close()
            except PlaywrightError as e:
                logger.warning(f"Error while closing browser {name.strip('_')}: {e}")
            setattr(self, name, None)
        self._page = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"Error while stopping playwright: {e}")
            self._playwright = None

    def fetch_page(self, store_name: str, page_number: int) -> str:
        """Return the HTML of one store search page."""
        if self._page is None:
            raise NavigationFailure("Browser is not open")

        url = build_search_url(store_name, page_number)
        logger.info(f"[{store_name}] Loading page {page_number}: {url}")
        try:
            self._page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightTimeoutError as e:
            raise NavigationFailure(f"Timed out loading page {page_number}: {e}") from e
        except PlaywrightError as e:
            raise NavigationFailure(f"Failed to load page {page_number}: {e}") from e

        title = self._page.title()
        if is_challenge_page(self._page.url, title):
            raise ChallengeDetected(self._page.url, title)

        try:
            self._wait_for_listings()
        except ElementTimeout as e:
            logger.warning(f"[{store_name}] Page {page_number}: {e}; continuing with current content")

        # dynamic cards keep rendering after DOMContentLoaded
        self._sleep(PAGE_SETTLE_SECONDS)
        try:
            return self._page.content()
        except PlaywrightError as e:
            raise NavigationFailure(f"Failed to read page {page_number}: {e}") from e

    def _wait_for_listings(self):
        try:
            self._page.wait_for_selector(
                TITLE_SELECTOR, timeout=ELEMENT_TIMEOUT_MS, state="attached"
            )
        except PlaywrightTimeoutError as e:
            raise ElementTimeout(f"listing titles not found within {ELEMENT_TIMEOUT_MS}ms") from e
