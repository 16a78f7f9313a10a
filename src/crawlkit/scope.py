"""Per-URL work item."""

import uuid
from typing import TYPE_CHECKING

from crawlkit.exceptions import AlreadySetError
from crawlkit.results import PageResult

if TYPE_CHECKING:
    from crawlkit.driver import Browser, Page


class Scope:
    """One URL moving through the crawl, attempt by attempt.

    A scope tracks the attempt count, the accumulated result, the stop flag
    that short-circuits the remaining pipeline stages, and the browser/page
    handles borrowed for the current attempt. Handles can be set once per
    attempt; setting one again without clearing it raises AlreadySetError so a
    pooled browser is never silently leaked.
    """

    def __init__(self, url: str, scope_id: str | None = None) -> None:
        self.url = url
        self.id = scope_id or uuid.uuid4().hex[:8]
        self.tries = 0
        self.result = PageResult()
        self._stopped = False
        self._browser: Browser | None = None
        self._page: Page | None = None

    def __repr__(self) -> str:
        return f"Scope(url={self.url!r}, id={self.id!r}, tries={self.tries})"

    def retry(self) -> None:
        """Count the start of a new attempt."""
        self.tries += 1

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        self._stopped = True

    @property
    def browser(self) -> "Browser | None":
        return self._browser

    def set_browser(self, browser: "Browser") -> None:
        if self._browser is not None:
            raise AlreadySetError(f"Browser already set for {self.url}")
        self._browser = browser

    def clear_browser(self) -> None:
        self._browser = None

    @property
    def page(self) -> "Page | None":
        return self._page

    def set_page(self, page: "Page") -> None:
        if self._page is not None:
            raise AlreadySetError(f"Page already set for {self.url}")
        self._page = page

    def clear_page(self) -> None:
        self._page = None

    def clone(self) -> "Scope":
        """Fresh scope for a retry: same URL, id and try count, empty result."""
        clone = Scope(self.url, scope_id=self.id)
        clone.tries = self.tries
        return clone
