# tests/unit/test_retry.py
import pytest

from errors import BrowserLaunchFailure, NavigationFailure, VerificationTransportFailure
from retry import browser_launch_policy, detail_request_policy


class Flaky:
    def __init__(self, errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_launch_failures_are_retried_with_growing_backoff():
    sleeps = []
    fn = Flaky([BrowserLaunchFailure("no chrome"), BrowserLaunchFailure("no chrome")])

    assert browser_launch_policy(sleep=sleeps.append).call(fn) == "done"
    assert fn.calls == 3
    assert sleeps == [2.0, 4.0]


def test_other_crawl_errors_are_not_retried():
    sleeps = []
    fn = Flaky([NavigationFailure("timeout")])

    with pytest.raises(NavigationFailure):
        browser_launch_policy(sleep=sleeps.append).call(fn)
    assert fn.calls == 1
    assert sleeps == []


def test_original_error_raised_after_last_attempt():
    fn = Flaky([BrowserLaunchFailure(f"attempt {i}") for i in range(5)])

    with pytest.raises(BrowserLaunchFailure, match="attempt 2"):
        browser_launch_policy(sleep=lambda s: None).call(fn)
    assert fn.calls == 3


def test_detail_policy_skips_permanent_http_errors():
    transient = Flaky([VerificationTransportFailure("1", "HTTP 502", 502)])
    permanent = Flaky([VerificationTransportFailure("1", "HTTP 404", 404)])
    policy = detail_request_policy(sleep=lambda s: None)

    assert policy.call(transient) == "done"
    assert transient.calls == 2
    with pytest.raises(VerificationTransportFailure):
        policy.call(permanent)
    assert permanent.calls == 1
