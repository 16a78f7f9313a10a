"""Tests for the browser pool."""

import asyncio

import pytest
from fakes import FakeLauncher, FakeSite

from crawlkit.config import BrowserCookie
from crawlkit.exceptions import BrowserLaunchError, PoolClosedError
from crawlkit.pool import BrowserFactory, BrowserPool


@pytest.fixture
def pool_launcher() -> FakeLauncher:
    return FakeLauncher(FakeSite())


def make_pool(launcher: FakeLauncher, max_size: int = 2, **kwargs: object) -> BrowserPool:
    return BrowserPool(BrowserFactory(launcher, **kwargs), max_size=max_size)  # type: ignore[arg-type]


async def test_browsers_are_created_lazily(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher, max_size=3)
    assert pool_launcher.browsers == []

    browser = await pool.acquire()

    assert pool_launcher.browsers == [browser]
    status = pool.get_status()
    assert (status.size, status.in_use, status.idle, status.created) == (1, 1, 0, 1)


async def test_released_browser_is_reused(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher)

    first = await pool.acquire()
    await pool.release(first)
    second = await pool.acquire()

    assert second is first
    assert len(pool_launcher.browsers) == 1


async def test_acquire_waits_at_capacity(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher, max_size=1)
    first = await pool.acquire()

    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    await pool.release(first)
    second = await asyncio.wait_for(waiter, timeout=1)

    assert second is first


async def test_destroy_frees_slot(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher, max_size=1)
    first = await pool.acquire()

    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0.01)
    await pool.destroy(first)
    second = await asyncio.wait_for(waiter, timeout=1)

    assert second is not first
    assert first.closed
    assert pool.get_status().destroyed == 1


async def test_cookies_are_added_on_creation(pool_launcher: FakeLauncher) -> None:
    cookies = [
        BrowserCookie(name="session", value="abc", domain=".example.com"),
        BrowserCookie(name="lang", value="en", url="http://example.com/", http_only=True),
    ]
    pool = make_pool(pool_launcher, cookies=cookies, parameters={"headless": False})

    browser = await pool.acquire()

    assert browser.parameters == {"headless": False}
    assert browser.cookies == [
        {"name": "session", "value": "abc", "domain": ".example.com", "path": "/"},
        {"name": "lang", "value": "en", "url": "http://example.com/", "httpOnly": True},
    ]


async def test_failed_cookie_closes_browser(pool_launcher: FakeLauncher) -> None:
    pool_launcher.rejected_cookies.add("bad")
    cookies = [BrowserCookie(name="bad", value="x", domain="example.com")]
    pool = make_pool(pool_launcher, max_size=1, cookies=cookies)

    with pytest.raises(BrowserLaunchError, match="bad"):
        await pool.acquire()

    assert pool_launcher.browsers[0].closed
    assert pool.get_status().size == 0


async def test_failed_launch_frees_slot(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher, max_size=1)
    pool_launcher.fail_launch = True

    with pytest.raises(BrowserLaunchError):
        await pool.acquire()

    pool_launcher.fail_launch = False
    browser = await asyncio.wait_for(pool.acquire(), timeout=1)
    assert browser is pool_launcher.browsers[0]


async def test_drain_waits_for_borrowed_browsers(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher, max_size=2)
    borrowed = await pool.acquire()
    idle = await pool.acquire()
    await pool.release(idle)

    drain = asyncio.create_task(pool.drain_and_destroy_all())
    await asyncio.sleep(0.01)
    assert not drain.done()

    with pytest.raises(PoolClosedError):
        await pool.acquire()

    await pool.release(borrowed)
    await asyncio.wait_for(drain, timeout=1)

    assert borrowed.closed
    assert idle.closed
    status = pool.get_status()
    assert (status.size, status.idle, status.in_use) == (0, 0, 0)
    assert status.draining


async def test_release_of_foreign_browser_fails(pool_launcher: FakeLauncher) -> None:
    pool = make_pool(pool_launcher)
    other = make_pool(pool_launcher)
    browser = await other.acquire()

    with pytest.raises(ValueError, match="does not belong"):
        await pool.release(browser)


def test_pool_size_must_be_positive(pool_launcher: FakeLauncher) -> None:
    with pytest.raises(ValueError):
        make_pool(pool_launcher, max_size=0)
