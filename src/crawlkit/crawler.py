"""Crawl orchestration.

CrawlKit is the public entry point: configure it, register a finder and
runners, then crawl. Each crawl() call snapshots the configuration and the
registrations into a CrawlRun, which owns the URL queue, the seen-map, the
browser pool and the dispatch loop for that crawl only.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass, field
from typing import Any, Literal, overload

from pydantic import ValidationError

from crawlkit.config import CrawlerConfig
from crawlkit.driver import BrowserLauncher
from crawlkit.exceptions import ConfigError, InvalidUrlError, is_retryable
from crawlkit.pool import BrowserFactory, BrowserPool
from crawlkit.results import CrawlReport, PageResult, ResultAggregator
from crawlkit.rules import URLNormalizer, UrlFilterEngine
from crawlkit.runnable import FinderRegistration, RunnerRegistration
from crawlkit.scope import Scope
from crawlkit.steps import StepContext
from crawlkit.utils import format_duration, get_task_logger
from crawlkit.worker import run_attempt

logger = logging.getLogger(__name__)


@dataclass
class CrawlStats:
    """Statistics collected during a crawl.

    Tracks finished pages, failures, retries and errors by type.
    """

    pages_crawled: int = 0
    pages_failed: int = 0
    retries: int = 0
    urls_discovered: int = 0
    start_time: float = field(default_factory=time.time)
    duration: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)  # error_type -> count

    def record_error(self, error: BaseException) -> None:
        error_type = type(error).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1


@dataclass(frozen=True)
class CrawlSession:
    """Everything a crawl needs, frozen when crawl() is called."""

    url: str
    config: CrawlerConfig
    finder: FinderRegistration | None = None
    runners: tuple[RunnerRegistration, ...] = ()

    @property
    def prefix(self) -> str:
        return f"crawlkit:{self.config.name}" if self.config.name else "crawlkit"


def normalize_start_url(url: str | None) -> str:
    """Validate and normalize a crawl start URL.

    Raises:
        InvalidUrlError: If the URL is missing or cannot be normalized
    """
    if not url:
        raise InvalidUrlError(str(url or ""), "no start URL given")
    return URLNormalizer.normalize_url(URLNormalizer.with_default_scheme(url))


class CrawlRun:
    """Queue, seen-map, browser pool and dispatch loop of one crawl.

    The queue is a deque: new URLs go to the back, retries to the front.
    At most ``concurrency`` attempts run at once; the loop waits for the first
    one to finish before dispatching more. Queue and seen-map mutations never
    span an await, so they are atomic with respect to the attempt tasks.
    """

    def __init__(self, session: CrawlSession, launcher: BrowserLauncher, streaming: bool = False) -> None:
        self.session = session
        self.config = session.config
        self.launcher = launcher
        self.max_tries = max(1, self.config.tries)

        self.aggregator = ResultAggregator(streaming=streaming)
        self.queue: deque[Scope] = deque()
        self.stats = CrawlStats()

        factory = BrowserFactory(launcher, self.config.browser_parameters, self.config.browser_cookies)
        self.pool = BrowserPool(factory, max_size=self.config.concurrency)
        self.ctx = StepContext(
            pool=self.pool,
            config=self.config,
            filter_engine=UrlFilterEngine(self.add_url),
            finder=session.finder,
            runners=session.runners,
        )

    def add_url(self, raw_url: str) -> bool:
        """Queue a URL unless it was seen before.

        Returns:
            True if the URL was queued

        Raises:
            InvalidUrlError: If the URL cannot be normalized
        """
        url = URLNormalizer.normalize_url(URLNormalizer.with_default_scheme(raw_url))
        if not self.aggregator.register(url):
            logger.debug(f"{self.session.prefix}: Skipping already seen {url}")
            return False
        self.queue.append(Scope(url))
        self.stats.urls_discovered += 1
        logger.debug(f"{self.session.prefix}: Added {url} to queue")
        return True

    async def results(self) -> AsyncIterator[tuple[str, PageResult]]:
        """Run the crawl, yielding ``(url, result)`` as pages finish.

        Closing the iterator early cancels the running attempts. The pool is
        drained and the launcher shut down in every case.
        """
        prefix = self.session.prefix
        logger.info(f"{prefix}: Starting crawl of {self.session.url}")
        tasks: dict[asyncio.Task[Exception | None], Scope] = {}

        try:
            self.add_url(self.session.url)

            while self.queue or tasks:
                while len(tasks) < self.config.concurrency and self.queue:
                    scope = self.queue.popleft()
                    task = asyncio.create_task(run_attempt(scope, self.ctx, self.config.name))
                    tasks[task] = scope

                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    scope = tasks.pop(task)
                    entry = self._process_result(scope, task.result())
                    if entry is not None:
                        yield entry

        finally:
            if tasks:
                logger.debug(f"{prefix}: Cancelling {len(tasks)} running attempts...")
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

            logger.debug(f"{prefix}: Draining browser pool...")
            await self.pool.drain_and_destroy_all()
            await self.launcher.shutdown()

            self.stats.duration = time.time() - self.stats.start_time
            logger.info(
                f"{prefix}: Crawl finished: {self.stats.pages_crawled} pages crawled, "
                f"{self.stats.pages_failed} failed, {self.stats.retries} retries. "
                f"Took {format_duration(self.stats.duration)}."
            )

    async def report(self) -> CrawlReport:
        """Run the crawl to completion and return every result."""
        async for _ in self.results():
            pass
        report = self.aggregator.report()
        report.stats = self.stats
        return report

    def _process_result(self, scope: Scope, error: Exception | None) -> tuple[str, PageResult] | None:
        if is_retryable(error) and scope.tries < self.max_tries:
            log = get_task_logger(scope.id, self.config.name)
            log.info(f"Retrying {scope.url} (attempt {scope.tries + 1} of {self.max_tries}).")
            self.stats.retries += 1
            self.queue.appendleft(scope.clone())
            return None

        if scope.result.error is not None:
            self.stats.pages_failed += 1
            self.stats.record_error(scope.result.error)
        else:
            self.stats.pages_crawled += 1
        return self.aggregator.record(scope.url, scope.result)


class CrawlKit:
    """Concurrent headless-browser crawler.

    Example:
        crawler = CrawlKit("http://example.com", name="docs")
        crawler.configure(concurrency=4, follow_redirects=True)
        crawler.set_finder(GenericAnchorsFinder())
        crawler.add_runner("title", TitleRunner())

        report = await crawler.crawl()

        async for url, result in crawler.crawl(stream=True):
            ...

    Args:
        url: Start URL; scheme-less URLs default to http://
        name: Crawler name shown in log output
        config: Crawler settings (defaults apply when omitted)
        launcher: Browser binding; defaults to the Playwright binding
    """

    def __init__(
        self,
        url: str | None = None,
        name: str | None = None,
        config: CrawlerConfig | None = None,
        launcher: BrowserLauncher | None = None,
    ) -> None:
        self.url = url
        self._config = config or CrawlerConfig()
        if name is not None:
            self.configure(name=name)
        self._launcher = launcher
        self._finder: FinderRegistration | None = None
        self._runners: dict[str, RunnerRegistration] = {}
        self._stats: CrawlStats | None = None

    @property
    def config(self) -> CrawlerConfig:
        return self._config

    @property
    def name(self) -> str | None:
        return self._config.name

    @property
    def stats(self) -> CrawlStats | None:
        """Statistics of the most recent crawl (None before the first one)."""
        return self._stats

    @property
    def finder(self) -> FinderRegistration | None:
        return self._finder

    @property
    def runners(self) -> dict[str, RunnerRegistration]:
        return dict(self._runners)

    def configure(self, **settings: Any) -> CrawlerConfig:
        """Replace configuration values, validating the result.

        Crawls already running keep the configuration they started with.

        Raises:
            ConfigError: On unknown settings or invalid values
        """
        known = set(CrawlerConfig.model_fields) | {"retries"}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise ConfigError(f"Unknown crawler settings: {', '.join(unknown)}")

        data = self._config.model_dump()
        data["redirect_filter"] = self._config.redirect_filter
        if "retries" in settings:
            data.pop("tries")
        data.update(settings)
        try:
            self._config = CrawlerConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid crawler settings:\n{e}") from e
        return self._config

    def set_finder(self, finder: Any, *parameters: Any) -> None:
        """Register the link finder; parameters are appended to its page call.

        Raises:
            ValueError: If the object is not a usable finder
        """
        self._finder = FinderRegistration.create(finder, *parameters)

    def clear_finder(self) -> None:
        self._finder = None

    def add_runner(self, key: str, runner: Any, *parameters: Any) -> None:
        """Register a runner under ``key``; parameters are appended to its page call.

        Registering an existing key replaces that runner in place.

        Raises:
            ValueError: If the key is empty or the object is not a usable runner
        """
        self._runners[key] = RunnerRegistration.create(key, runner, *parameters)

    def remove_runner(self, key: str) -> None:
        self._runners.pop(key, None)

    def _snapshot(self) -> CrawlSession:
        return CrawlSession(
            url=normalize_start_url(self.url),
            config=self._config,
            finder=self._finder,
            runners=tuple(self._runners.values()),
        )

    def _new_run(self, streaming: bool) -> CrawlRun:
        session = self._snapshot()
        launcher = self._launcher
        if launcher is None:
            from crawlkit.playwright_driver import PlaywrightLauncher

            launcher = PlaywrightLauncher()
        run = CrawlRun(session, launcher, streaming=streaming)
        self._stats = run.stats
        return run

    @overload
    def crawl(self, stream: Literal[False] = False) -> Coroutine[Any, Any, CrawlReport]: ...

    @overload
    def crawl(self, stream: Literal[True]) -> AsyncIterator[tuple[str, PageResult]]: ...

    def crawl(
        self, stream: bool = False
    ) -> Coroutine[Any, Any, CrawlReport] | AsyncIterator[tuple[str, PageResult]]:
        """Start a crawl.

        The start URL is validated immediately, before anything is launched.

        Args:
            stream: Yield ``(url, result)`` pairs as pages finish instead of
                returning one report at the end

        Returns:
            A coroutine resolving to a CrawlReport, or an async iterator of
            results in completion order when streaming

        Raises:
            InvalidUrlError: If the start URL is missing or invalid
        """
        run = self._new_run(streaming=stream)
        if stream:
            return run.results()
        return run.report()
