"""Tests for crash recovery and the retry policy."""

import asyncio
from typing import Any

import pytest
from fakes import FakeLauncher, FakePage, FakeSite, ScriptedRunner

from crawlkit.exceptions import (
    AttemptTimeoutError,
    PageOpenError,
    ProcessCrashError,
    RunnableError,
)
from crawlkit.finders import GenericAnchorsFinder

URL = "http://example.com/"


@pytest.mark.parametrize("crashes", [1, 2, 3])
async def test_crashing_page_succeeds_with_enough_tries(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher, crashes: int
) -> None:
    """A page crashing K times succeeds when tries >= K + 1."""
    site.add(URL, crash_times=crashes)
    crawler = make_crawler(tries=crashes + 1)

    report = await crawler.crawl()

    assert report[URL].ok
    assert launcher.opened == [URL] * (crashes + 1)
    assert crawler.stats.retries == crashes


@pytest.mark.parametrize("crashes", [1, 2, 3])
async def test_crashing_page_fails_when_tries_exhausted(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher, crashes: int
) -> None:
    """With tries == K the K-th crash is final and the page was opened exactly K times."""
    site.add(URL, crash_times=crashes)
    crawler = make_crawler(tries=crashes)

    report = await crawler.crawl()

    assert isinstance(report[URL].error, ProcessCrashError)
    assert launcher.opened == [URL] * crashes


async def test_final_error_does_not_carry_earlier_runner_results(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    """Runner results of a crashed attempt are gone when a later attempt fails for good."""
    document = site.add(URL)

    @launcher.script("title")
    async def title(page: FakePage, *params: Any) -> Any:
        return "Title"

    @launcher.script("crash")
    async def crash(page: FakePage, *params: Any) -> Any:
        document.crash_times = 1
        page.browser.crashed = True
        raise ProcessCrashError("Browser process crashed")

    crawler = make_crawler(tries=2)
    crawler.add_runner("title", ScriptedRunner("title"))
    crawler.add_runner("crash", ScriptedRunner("crash"))

    report = await crawler.crawl()

    result = report[URL]
    assert isinstance(result.error, ProcessCrashError)
    assert result.runners is None
    assert set(result.to_dict()) == {"error"}
    assert launcher.opened == [URL, URL]


async def test_crashed_browsers_are_destroyed(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    site.add(URL, crash_times=2)
    crawler = make_crawler(tries=3)

    await crawler.crawl()

    assert len(launcher.browsers) == 3
    crashed = [browser for browser in launcher.browsers if browser.crashed]
    assert len(crashed) == 2
    assert all(browser.closed for browser in launcher.browsers)
    # Pages of crashed browsers are not closed individually
    assert all(not page.closed for browser in crashed for page in browser.pages)


async def test_zero_tries_still_makes_one_attempt(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    site.add(URL, crash_times=1)
    crawler = make_crawler(tries=0)

    report = await crawler.crawl()

    assert isinstance(report[URL].error, ProcessCrashError)
    assert launcher.opened == [URL]


async def test_attempt_timeout_is_retried(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    site.add(URL, hang=True)
    crawler = make_crawler(timeout=100, tries=2)

    report = await crawler.crawl()

    error = report[URL].error
    assert isinstance(error, AttemptTimeoutError)
    assert isinstance(error, TimeoutError)
    assert str(error) == "Worker timed out after 100ms."
    assert launcher.opened == [URL, URL]
    assert len(launcher.browsers) == 2
    assert all(browser.closed for browser in launcher.browsers)


async def test_attempt_timeout_cancels_running_runner(
    make_crawler: Any, launcher: FakeLauncher
) -> None:
    """The attempt deadline wins over a longer runner deadline."""

    @launcher.script("hang")
    async def hang(page: FakePage, *params: Any) -> Any:
        await asyncio.Event().wait()

    crawler = make_crawler(timeout=150, tries=1)
    crawler.add_runner("slow", ScriptedRunner("hang", timeout=5000))

    report = await crawler.crawl()

    assert isinstance(report[URL].error, AttemptTimeoutError)


async def test_runner_crash_aborts_attempt_and_retries(
    make_crawler: Any, launcher: FakeLauncher
) -> None:
    calls = 0

    @launcher.script("flaky")
    async def flaky(page: FakePage, *params: Any) -> Any:
        nonlocal calls
        calls += 1
        if calls == 1:
            page.browser.crashed = True
            raise ProcessCrashError("Browser page crashed")
        return "ok"

    @launcher.script("after")
    async def after(page: FakePage, *params: Any) -> Any:
        return "after"

    crawler = make_crawler(tries=2)
    crawler.add_runner("flaky", ScriptedRunner("flaky"))
    crawler.add_runner("after", ScriptedRunner("after"))

    report = await crawler.crawl()

    result = report[URL]
    assert result.ok
    assert result.runners is not None
    assert result.runners["flaky"].result == "ok"
    assert result.runners["after"].result == "after"
    assert calls == 2


async def test_runner_error_is_not_retried(make_crawler: Any, launcher: FakeLauncher) -> None:
    calls = 0

    @launcher.script("fails")
    async def fails(page: FakePage, *params: Any) -> Any:
        nonlocal calls
        calls += 1
        raise RunnableError({"reason": "no table found"})

    crawler = make_crawler(tries=3)
    crawler.add_runner("table", ScriptedRunner("fails"))

    report = await crawler.crawl()

    result = report[URL]
    assert result.ok
    assert result.runners is not None
    assert isinstance(result.runners["table"].error, RunnableError)
    assert result.to_dict()["runners"]["table"]["error"]["payload"] == {"reason": "no table found"}
    assert calls == 1


async def test_page_open_error_is_terminal(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    site.add(URL, open_error="net::ERR_NAME_NOT_RESOLVED")
    crawler = make_crawler(tries=3)

    report = await crawler.crawl()

    assert isinstance(report[URL].error, PageOpenError)
    assert launcher.opened == [URL]
    assert len(launcher.closed_browsers) == 1


async def test_retry_goes_to_queue_front(
    make_crawler: Any, site: FakeSite, launcher: FakeLauncher
) -> None:
    """A retried page is taken before pages discovered earlier."""
    site.add(URL, links=["/a", "/b"])
    site.add("http://example.com/a", crash_times=1)
    site.add("http://example.com/b")

    crawler = make_crawler(concurrency=1, tries=2)
    crawler.set_finder(GenericAnchorsFinder())

    report = await crawler.crawl()

    assert launcher.opened == [
        URL,
        "http://example.com/a",
        "http://example.com/a",
        "http://example.com/b",
    ]
    assert all(result.ok for result in report.results.values())
