"""Browser pool management.

This module manages a bounded pool of browser processes shared by all page
workers. Browsers are expensive to start, so they are created lazily up to the
pool size, reused across pages and never reaped while idle. A browser that
crashed (or whose page attempt timed out) is destroyed instead of released and
its slot is freed for a fresh one.
"""

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

from crawlkit.config import BrowserCookie
from crawlkit.driver import Browser, BrowserLauncher
from crawlkit.exceptions import BrowserLaunchError, PoolClosedError

logger = logging.getLogger(__name__)


@dataclass
class PoolStatus:
    """Current status of the browser pool."""

    max_size: int
    size: int
    idle: int
    in_use: int
    created: int
    destroyed: int
    draining: bool


class BrowserFactory:
    """Creates browsers: launch the process, then seed it with cookies.

    Cookies are added one after another; the first failure closes the
    half-built browser and fails the creation. Creation is never retried here.
    """

    def __init__(
        self,
        launcher: BrowserLauncher,
        parameters: dict[str, Any] | None = None,
        cookies: list[BrowserCookie] | None = None,
    ) -> None:
        self.launcher = launcher
        self.parameters = parameters or {}
        self.cookies = cookies or []

    async def create(self) -> Browser:
        logger.debug("Creating browser instance")
        try:
            browser = await self.launcher.launch(self.parameters)
        except Exception as e:
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

        if not self.cookies:
            logger.debug("No cookies to add.")
            return browser

        for cookie in self.cookies:
            logger.debug(f"Adding cookie '{cookie.name}'")
            try:
                await browser.add_cookie(cookie.to_browser_dict())
            except Exception as e:
                logger.error(f"Adding cookie '{cookie.name}' failed: {e}")
                with contextlib.suppress(Exception):
                    await browser.close()
                raise BrowserLaunchError(f"Failed to add cookie '{cookie.name}': {e}") from e

        logger.debug("Finished adding cookies")
        return browser

    async def destroy(self, browser: Browser) -> None:
        logger.debug("Destroying browser instance.")
        try:
            await browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")


class BrowserPool:
    """Bounded pool of browser processes.

    Features:
    - Lazy creation up to max_size, acquisition suspends while at capacity
    - release() returns a browser for reuse, destroy() discards it
    - Graceful shutdown: drain_and_destroy_all() waits for borrowed browsers

    All state changes happen under one condition, so any number of workers may
    acquire, release and destroy concurrently.

    Usage:
        pool = BrowserPool(BrowserFactory(launcher), max_size=4)
        browser = await pool.acquire()
        try:
            ...
        finally:
            await pool.release(browser)
    """

    def __init__(self, factory: BrowserFactory, max_size: int = 1) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.factory = factory
        self.max_size = max_size

        self._idle: deque[Browser] = deque()
        self._in_use: list[Browser] = []
        self._size = 0  # live browsers, including ones being created
        self._cond = asyncio.Condition()
        self._draining = False
        self._created = 0
        self._destroyed = 0

    async def acquire(self) -> Browser:
        """Borrow a browser, creating one if the pool has room.

        Raises:
            BrowserLaunchError: If a new browser could not be created
            PoolClosedError: If the pool is draining
        """
        async with self._cond:
            while True:
                if self._draining:
                    raise PoolClosedError("Browser pool is draining")
                if self._idle:
                    browser = self._idle.popleft()
                    self._in_use.append(browser)
                    return browser
                if self._size < self.max_size:
                    self._size += 1
                    break
                await self._cond.wait()

        try:
            browser = await self.factory.create()
        except BaseException:
            async with self._cond:
                self._size -= 1
                self._cond.notify()
            raise

        self._created += 1
        self._in_use.append(browser)
        logger.debug(f"Created browser ({self._size}/{self.max_size} live)")
        return browser

    async def release(self, browser: Browser) -> None:
        """Return a borrowed browser for reuse."""
        async with self._cond:
            self._remove_in_use(browser)
            if not self._draining:
                self._idle.append(browser)
                self._cond.notify()
                return
            self._size -= 1
            self._cond.notify_all()

        await self._destroy_browser(browser)

    async def destroy(self, browser: Browser) -> None:
        """Permanently discard a borrowed browser and free its slot."""
        async with self._cond:
            self._remove_in_use(browser)
            self._size -= 1
            self._cond.notify_all()

        await self._destroy_browser(browser)

    async def drain_and_destroy_all(self) -> None:
        """Stop handing out browsers, wait for borrowed ones, destroy everything."""
        async with self._cond:
            self._draining = True
            self._cond.notify_all()
            await self._cond.wait_for(lambda: not self._in_use)
            idle = list(self._idle)
            self._idle.clear()
            self._size -= len(idle)

        for browser in idle:
            await self._destroy_browser(browser)

        logger.debug(f"Pool drained ({self._created} created, {self._destroyed} destroyed)")

    def get_status(self) -> PoolStatus:
        return PoolStatus(
            max_size=self.max_size,
            size=self._size,
            idle=len(self._idle),
            in_use=len(self._in_use),
            created=self._created,
            destroyed=self._destroyed,
            draining=self._draining,
        )

    def _remove_in_use(self, browser: Browser) -> None:
        try:
            self._in_use.remove(browser)
        except ValueError:
            raise ValueError("Browser does not belong to this pool or was already returned") from None

    async def _destroy_browser(self, browser: Browser) -> None:
        self._destroyed += 1
        await self.factory.destroy(browser)
