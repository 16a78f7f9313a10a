"""Playwright browser binding.

Each pool handle is one Chromium process with a single browser context, so
cookies added to a handle are shared by all of its pages. Pages expose the
``crawlkitCallback`` function runnables report through, and route every
main-frame navigation through the crawler's navigation handler. A page marked
``navigation_locked`` blocks those navigations: client-side ones are aborted and
server redirects of the initial document are delivered without their
``Location`` header, so the page is processed exactly as the server sent it.
"""

import asyncio
import contextlib
import logging
from typing import Any
from urllib.parse import urljoin

import aiofiles

from crawlkit.driver import CALLBACK_NAME, Log, NavigationHandler
from crawlkit.exceptions import CrawlError, PageOpenError, ProcessCrashError, RunnableError

logger = logging.getLogger(__name__)

# Fragments of Playwright error messages meaning the page or browser is gone
CRASH_MARKERS = ("crash", "has been closed", "target closed")

DEFAULT_LAUNCH_PARAMETERS: dict[str, Any] = {"headless": True}


def is_crash_message(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in CRASH_MARKERS)


class PlaywrightPage:
    """A Playwright page satisfying the crawlkit Page protocol."""

    def __init__(self, page: Any) -> None:
        self._page = page
        self._pending: asyncio.Future[Any] | None = None
        self._navigation_handler: NavigationHandler | None = None
        self._navigation_locked = False
        self._target_url: str | None = None
        self._document_routed = False
        self._headers: dict[str, str] = {}
        self._crashed = False
        self._log: Log = logger
        self._log_source = "page"

    async def setup(self) -> None:
        await self._page.expose_function(CALLBACK_NAME, self._on_callback)
        self._page.on("crash", self._on_crash)
        self._page.on("console", self._on_console)
        self._page.on("pageerror", self._on_page_error)
        await self._page.route("**/*", self._route_handler)

    # ========== Settings ==========

    async def set_setting(self, key: str, value: Any) -> None:
        if key == "user_agent":
            self._headers["User-Agent"] = str(value)
            await self._page.set_extra_http_headers(self._headers)
        elif key == "extra_http_headers":
            self._headers.update({str(k): str(v) for k, v in dict(value).items()})
            await self._page.set_extra_http_headers(self._headers)
        elif key == "viewport":
            await self._page.set_viewport_size(dict(value))
        elif key == "navigation_locked":
            self._navigation_locked = bool(value)
        else:
            raise CrawlError(f"Unsupported page setting: {key}")

    def on_navigation_requested(self, handler: NavigationHandler) -> None:
        self._navigation_handler = handler

    def set_logger(self, log: Log, source: str) -> None:
        self._log = log
        self._log_source = source

    def _on_console(self, message: Any) -> None:
        self._log.debug(f"Console {message.type} from {self._log_source}: {message.text}")

    def _on_page_error(self, error: Any) -> None:
        self._log.debug(f"Page error from {self._log_source}: {error}")

    # ========== Navigation ==========

    async def open(self, url: str) -> int | None:
        self._target_url = url
        self._document_routed = False
        try:
            # Deadlines are enforced by the crawler's attempt timeout
            response = await self._page.goto(url, wait_until="load", timeout=0)
        except Exception as e:
            raise self._map_error(e, PageOpenError, f"Failed to open {url}") from e
        if response is None:
            return None
        return response.status

    def _notify_navigation(self, target_url: str, main_frame: bool) -> None:
        if self._navigation_handler is None:
            return
        try:
            self._navigation_handler(target_url, main_frame)
        except Exception as e:
            logger.warning(f"Navigation handler failed for {target_url}: {e}")

    async def _route_handler(self, route: Any) -> None:
        request = route.request
        if not request.is_navigation_request():
            await route.continue_()
            return

        main_frame = request.frame.parent_frame is None
        if not main_frame:
            self._notify_navigation(request.url, False)
            await route.continue_()
            return

        # The first main-frame navigation after goto is the page's own load
        if self._target_url is not None and not self._document_routed:
            self._document_routed = True
            await self._route_document(route)
            return

        self._notify_navigation(request.url, True)
        if self._navigation_locked:
            logger.debug(f"Blocked navigation to {request.url}")
            await route.abort()
        else:
            await route.continue_()

    async def _route_document(self, route: Any) -> None:
        """Fetch the initial document without following server redirects."""
        try:
            response = await route.fetch(max_redirects=0)
        except Exception as e:
            logger.debug(f"Fetching {route.request.url} failed: {e}")
            await route.abort()
            return

        location = response.headers.get("location")
        if 300 <= response.status < 400 and location:
            self._notify_navigation(urljoin(route.request.url, location), True)
            if self._navigation_locked:
                headers = {k: v for k, v in response.headers.items() if k.lower() != "location"}
                await route.fulfill(response=response, headers=headers)
                return

        await route.fulfill(response=response)

    # ========== Runnables ==========

    def _on_callback(self, error: Any = None, result: Any = None) -> None:
        future = self._pending
        if future is None or future.done():
            logger.debug("Ignoring callback without a pending runnable")
            return
        if error is not None:
            future.set_exception(RunnableError(error))
        else:
            future.set_result(result)

    def _on_crash(self, _page: Any) -> None:
        self._crashed = True
        future = self._pending
        if future is not None and not future.done():
            future.set_exception(ProcessCrashError("Browser page crashed"))

    async def inject_script(self, path: str) -> None:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
        try:
            await self._page.add_script_tag(content=content)
        except Exception as e:
            raise self._map_error(e, CrawlError, f"Failed to inject {path}") from e

    async def evaluate(self, runnable: str, *params: Any) -> Any:
        if self._crashed:
            raise ProcessCrashError("Browser page crashed")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending = future
        try:
            try:
                await self._page.evaluate(
                    f"(params) => ({runnable}).apply(null, params)", list(params)
                )
            except Exception as e:
                raise self._map_error(e, RunnableError, None) from e
            return await future
        finally:
            self._pending = None
            if not future.done():
                future.cancel()

    async def close(self) -> None:
        await self._page.close()

    def _map_error(self, error: Exception, fallback: type[Exception], message: str | None) -> Exception:
        text = str(error)
        if self._crashed or is_crash_message(text):
            return ProcessCrashError(text)
        if fallback is RunnableError:
            return RunnableError(text)
        return fallback(f"{message}: {text}" if message else text)


class PlaywrightBrowser:
    """One Chromium process and its browser context."""

    def __init__(self, browser: Any, context: Any) -> None:
        self._browser = browser
        self._context = context

    async def create_page(self) -> PlaywrightPage:
        try:
            page = PlaywrightPage(await self._context.new_page())
            await page.setup()
        except Exception as e:
            if is_crash_message(str(e)):
                raise ProcessCrashError(str(e)) from e
            raise
        return page

    async def add_cookie(self, cookie: dict[str, Any]) -> None:
        await self._context.add_cookies([cookie])

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._context.close()
        await self._browser.close()


class PlaywrightLauncher:
    """Starts Playwright on first use and launches Chromium processes.

    Launch parameters are passed to ``chromium.launch()``; the optional
    ``context`` entry holds keyword arguments for ``browser.new_context()``.
    """

    def __init__(self) -> None:
        self._playwright: Any | None = None
        self._lock = asyncio.Lock()

    async def _ensure_playwright(self) -> Any:
        """Start the Playwright driver once.

        Raises:
            ImportError: If playwright is not installed
        """
        async with self._lock:
            if self._playwright is not None:
                return self._playwright

            try:
                from playwright.async_api import async_playwright
            except ImportError as e:
                raise ImportError(
                    "Playwright is required to drive browsers. "
                    "Install with: pip install playwright && playwright install chromium"
                ) from e

            logger.info("Starting Playwright...")
            self._playwright = await async_playwright().start()
            return self._playwright

    async def launch(self, parameters: dict[str, Any]) -> PlaywrightBrowser:
        playwright = await self._ensure_playwright()

        options = {**DEFAULT_LAUNCH_PARAMETERS, **parameters}
        context_options = options.pop("context", None) or {}

        browser = await playwright.chromium.launch(**options)
        try:
            context = await browser.new_context(**context_options)
        except Exception:
            with contextlib.suppress(Exception):
                await browser.close()
            raise
        logger.debug("Launched Chromium")
        return PlaywrightBrowser(browser, context)

    async def shutdown(self) -> None:
        async with self._lock:
            if self._playwright is None:
                return
            with contextlib.suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
            logger.info("Playwright stopped")
