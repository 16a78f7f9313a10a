"""Browser binding protocols.

The crawler never talks to a browser library directly. It drives objects
satisfying these protocols, so the Playwright binding in
crawlkit.playwright_driver can be swapped for any other process binding (or a
scripted fake in tests).

Page-side code ("runnables") is a JavaScript function source string. It is
called with the registered parameters and must report back exactly once by
calling ``window.crawlkitCallback(error, result)``; ``Page.evaluate`` returns
once that happens.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

# Name of the page-side function runnables call to report their result
CALLBACK_NAME = "crawlkitCallback"

# (target_url, is_main_frame) -> None
NavigationHandler = Callable[[str, bool], None]

Log = logging.Logger | logging.LoggerAdapter[logging.Logger]


class Page(Protocol):
    """A browser tab."""

    async def set_setting(self, key: str, value: Any) -> None:
        """Apply one page setting.

        The binding must understand at least ``user_agent`` and
        ``navigation_locked``; unknown keys raise.
        """
        ...

    def on_navigation_requested(self, handler: NavigationHandler) -> None:
        """Register the handler called for every navigation the page requests."""
        ...

    def set_logger(self, log: Log, source: str) -> None:
        """Send console messages and uncaught errors of the page to ``log``.

        They are logged at debug level, tagged with ``source`` (the runnable
        currently running in the page).
        """
        ...

    async def open(self, url: str) -> int | None:
        """Navigate to ``url`` and wait for the load.

        Returns:
            Status of the top-level response (None if there was none)

        Raises:
            PageOpenError: If the page could not be loaded
            ProcessCrashError: If the browser process died
        """
        ...

    async def inject_script(self, path: str) -> None:
        """Inject a local JavaScript file into the page."""
        ...

    async def evaluate(self, runnable: str, *params: Any) -> Any:
        """Run a runnable in the page and wait for its callback.

        Returns:
            The ``result`` argument the runnable passed to the callback

        Raises:
            RunnableError: If the runnable reported (or threw) an error
            ProcessCrashError: If the browser process died
        """
        ...

    async def close(self) -> None: ...


class Browser(Protocol):
    """One external browser process."""

    async def create_page(self) -> Page: ...

    async def add_cookie(self, cookie: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class BrowserLauncher(Protocol):
    """Spawns browser processes."""

    async def launch(self, parameters: dict[str, Any]) -> Browser:
        """Start a browser process with the given launch parameters."""
        ...

    async def shutdown(self) -> None:
        """Release launcher-wide resources once all browsers are closed."""
        ...
