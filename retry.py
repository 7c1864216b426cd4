"""Shared retry policy for browser launches and detail API calls."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)

import config
from errors import BrowserLaunchFailure, VerificationTransportFailure

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Max attempts, a backoff strategy and a predicate deciding what is retryable.

    Errors the predicate rejects propagate on the first attempt. After the last
    attempt the original exception is re-raised.
    """

    max_attempts: int
    wait: Any
    retry_on: Callable[[BaseException], bool]
    sleep: Callable[[float], None] = field(default=time.sleep)

    def call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(self.retry_on),
            sleep=self.sleep,
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        return retryer(fn, *args, **kwargs)


def browser_launch_policy(sleep: Optional[Callable[[float], None]] = None) -> RetryPolicy:
    """Relaunch the whole browser engine on launch failure: 2s, 4s, ... between tries."""
    step = config.BROWSER_LAUNCH_BACKOFF_SECONDS
    return RetryPolicy(
        max_attempts=config.BROWSER_LAUNCH_ATTEMPTS,
        wait=wait_incrementing(start=step, increment=step),
        retry_on=lambda e: isinstance(e, BrowserLaunchFailure),
        sleep=sleep or time.sleep,
    )


def detail_request_policy(sleep: Optional[Callable[[float], None]] = None) -> RetryPolicy:
    """Retry detail API calls on connection errors, 429 and 5xx."""
    return RetryPolicy(
        max_attempts=config.DETAIL_API_ATTEMPTS,
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry_on=lambda e: isinstance(e, VerificationTransportFailure) and e.is_transient,
        sleep=sleep or time.sleep,
    )
