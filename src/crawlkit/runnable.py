"""Finder and runner interfaces.

A runnable is page-side JavaScript: a function source string that is called
with the registered parameters inside the crawled page and reports back exactly
once through ``window.crawlkitCallback(error, result)``. Throwing inside the
function counts as reporting an error.

Finders discover links, runners extract data. Subclassing Finder or Runner is
the easiest way to write one, but any object with the required methods is
accepted; capabilities are checked once, at registration time.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from crawlkit.rules import UrlFilter

NOOP_RUNNABLE = "function noop() { window.crawlkitCallback(null, undefined); }"


class Runnable:
    """Base for page-side code.

    ``timeout`` is the time in ms the page gets to call back. Unset, zero or
    negative values fall back to the crawler's ``runnable_timeout``.
    """

    def __init__(self, timeout: int | None = None) -> None:
        self.timeout = timeout

    @property
    def timeout(self) -> int | None:
        return self._timeout

    @timeout.setter
    def timeout(self, value: int | None) -> None:
        self._timeout = None if value is None else int(value)

    def get_runnable(self) -> str:
        """Return the JavaScript function source evaluated in the page."""
        return NOOP_RUNNABLE


class Finder(Runnable):
    """Link discovery blueprint.

    The runnable must call back with a list of URLs (relative ones are
    resolved against the page URL). ``url_filter`` may discard (False) or
    rewrite each URL before it is queued; it runs on the Python side.
    """

    def url_filter(self, url: str, origin_url: str) -> str | bool:
        return url


class Runner(Runnable):
    """Data extraction blueprint.

    Companion files (local JavaScript files) are injected in order before the
    runnable is evaluated, so it can use whatever globals they expose.
    ``transform_result`` post-processes a successful result on the Python
    side and may be sync or async.
    """

    def get_companion_files(self) -> list[str] | Awaitable[list[str]]:
        return []

    def transform_result(self, result: Any) -> Any:
        return result


def resolve_timeout(runnable: object, default_ms: int) -> int:
    """Effective timeout of a finder/runner in ms."""
    value = getattr(runnable, "timeout", None)
    if value is None:
        return default_ms
    try:
        timeout = int(value)
    except (TypeError, ValueError):
        return default_ms
    return timeout if timeout > 0 else default_ms


def _require_method(obj: object, name: str, kind: str) -> None:
    if not callable(getattr(obj, name, None)):
        raise ValueError(f"{kind} needs a callable '{name}' method, got {type(obj).__name__}")


@dataclass(frozen=True)
class FinderRegistration:
    """The crawler's single finder plus the parameters appended to its call."""

    finder: Any
    parameters: tuple[Any, ...] = ()

    @classmethod
    def create(cls, finder: Any, *parameters: Any) -> "FinderRegistration":
        """Validate a finder object.

        Raises:
            ValueError: If the finder lacks ``get_runnable`` or has a
                non-callable ``url_filter``
        """
        if finder is None:
            raise ValueError("Finder cannot be None")
        _require_method(finder, "get_runnable", "Finder")
        url_filter = getattr(finder, "url_filter", None)
        if url_filter is not None and not callable(url_filter):
            raise ValueError("Finder 'url_filter' must be callable")
        return cls(finder=finder, parameters=tuple(parameters))

    @property
    def url_filter(self) -> UrlFilter | None:
        return getattr(self.finder, "url_filter", None)

    def get_runnable(self) -> str:
        return self.finder.get_runnable()

    def timeout(self, default_ms: int) -> int:
        return resolve_timeout(self.finder, default_ms)


@dataclass(frozen=True)
class RunnerRegistration:
    """A named runner plus the parameters appended to its call."""

    key: str
    runner: Any
    parameters: tuple[Any, ...] = ()

    @classmethod
    def create(cls, key: str, runner: Any, *parameters: Any) -> "RunnerRegistration":
        """Validate a runner object.

        Raises:
            ValueError: If the key is empty or the runner lacks
                ``get_runnable``/``get_companion_files``
        """
        if not isinstance(key, str) or not key:
            raise ValueError("Runner key must be a non-empty string")
        if runner is None:
            raise ValueError(f"Runner '{key}' cannot be None")
        _require_method(runner, "get_runnable", f"Runner '{key}'")
        _require_method(runner, "get_companion_files", f"Runner '{key}'")
        transform = getattr(runner, "transform_result", None)
        if transform is not None and not callable(transform):
            raise ValueError(f"Runner '{key}' 'transform_result' must be callable")
        return cls(key=key, runner=runner, parameters=tuple(parameters))

    def get_runnable(self) -> str:
        return self.runner.get_runnable()

    async def companion_files(self) -> list[str]:
        files = self.runner.get_companion_files()
        if inspect.isawaitable(files):
            files = await files
        return list(files or [])

    @property
    def transform(self) -> Callable[[Any], Any] | None:
        return getattr(self.runner, "transform_result", None)

    async def apply_transform(self, result: Any) -> Any:
        transform = self.transform
        if transform is None:
            return result
        value = transform(result)
        if inspect.isawaitable(value):
            value = await value
        return value

    def timeout(self, default_ms: int) -> int:
        return resolve_timeout(self.runner, default_ms)
