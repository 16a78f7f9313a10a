"""Page pipeline stages.

Every attempt runs these stages strictly in order. Each stage is a coroutine
taking ``(scope, log, ctx)`` and is wrapped by ``stop_guard`` so it becomes a
no-op once the scope has been stopped. Attempt-level failures are raised and
end the attempt; finder and runner failures are recorded in the scope result
and the pipeline carries on.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import unquote

from crawlkit import __version__
from crawlkit.config import CrawlerConfig
from crawlkit.driver import Log
from crawlkit.exceptions import (
    AlreadySetError,
    InvalidUrlError,
    ProcessCrashError,
    RedirectError,
    RunnableTimeoutError,
    StatusError,
    TransformationError,
)
from crawlkit.pool import BrowserPool
from crawlkit.results import RunnerResult
from crawlkit.rules import URLNormalizer, UrlFilterEngine
from crawlkit.runnable import FinderRegistration, RunnerRegistration
from crawlkit.scope import Scope

DEFAULT_USER_AGENT = f"CrawlKit/{__version__} (+https://github.com/crawlkit/crawlkit)"


@dataclass(frozen=True)
class StepContext:
    """Everything the stages need besides the scope, fixed for one crawl."""

    pool: BrowserPool
    config: CrawlerConfig
    filter_engine: UrlFilterEngine
    finder: FinderRegistration | None = None
    runners: tuple[RunnerRegistration, ...] = ()


Step = Callable[[Scope, Log, StepContext], Awaitable[None]]


def stop_guard(step: Step) -> Step:
    """Skip the stage when the scope was stopped by an earlier one."""

    @functools.wraps(step)
    async def guarded(scope: Scope, log: Log, ctx: StepContext) -> None:
        if scope.stopped:
            log.debug(f"Scope stopped, skipping {step.__name__}")
            return
        await step(scope, log, ctx)

    return guarded


async def run_with_timeout(awaitable: Awaitable[Any], timeout_ms: int, label: str) -> Any:
    """Await ``awaitable`` for at most ``timeout_ms``.

    Raises:
        RunnableTimeoutError: If the deadline passed first
    """
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            return await awaitable
    except TimeoutError as e:
        if isinstance(e, RunnableTimeoutError):
            raise
        raise RunnableTimeoutError(label, timeout_ms) from None


def _same_document(url: str, other: str) -> bool:
    """Whether both URLs load the same document, ignoring fragment and escaping."""
    if url == other:
        return True
    try:
        return unquote(URLNormalizer.document_url(url)) == unquote(URLNormalizer.document_url(other))
    except InvalidUrlError:
        return False


# ========== Stages ==========


@stop_guard
async def acquire_browser(scope: Scope, log: Log, ctx: StepContext) -> None:
    log.debug("Acquiring browser.")
    browser = await ctx.pool.acquire()
    try:
        scope.set_browser(browser)
    except AlreadySetError:
        await ctx.pool.release(browser)
        raise
    log.debug("Acquired browser.")


@stop_guard
async def create_page(scope: Scope, log: Log, ctx: StepContext) -> None:
    assert scope.browser is not None
    log.debug("Creating page.")
    page = await scope.browser.create_page()
    scope.set_page(page)
    page.set_logger(log, "page")
    log.debug("Page created.")


@stop_guard
async def set_page_settings(scope: Scope, log: Log, ctx: StepContext) -> None:
    assert scope.page is not None
    settings: dict[str, Any] = {"user_agent": DEFAULT_USER_AGENT, **ctx.config.page_settings}
    if not ctx.config.follow_redirects:
        settings["navigation_locked"] = True

    for key, value in settings.items():
        log.debug(f"Setting page setting {key}")
        await scope.page.set_setting(key, value)
    log.debug("Page settings set.")


@stop_guard
async def open_page(scope: Scope, log: Log, ctx: StepContext) -> None:
    """Open the scope URL, turning redirects and error statuses into errors.

    Redirects are only acted upon with ``follow_redirects``: the target goes
    through the redirect filter and, if accepted, is queued. The first
    redirect seen while opening decides the attempt's outcome.
    """
    page = scope.page
    assert page is not None
    opening = True
    redirect: RedirectError | None = None

    def on_navigation(target_url: str, main_frame: bool) -> None:
        nonlocal redirect
        if _same_document(target_url, scope.url):
            return
        log.debug(f"Page for {scope.url} asks for navigation to {target_url}")
        if not ctx.config.follow_redirects or not main_frame:
            return
        state = ctx.filter_engine.submit(ctx.config.redirect_filter, target_url, scope.url, log=log)
        if opening and redirect is None:
            redirect = RedirectError(scope.url, target_url, followed=state is not False)

    page.on_navigation_requested(on_navigation)

    log.debug("Opening page.")
    try:
        status = await page.open(scope.url)
    except ProcessCrashError:
        raise
    except Exception:
        if redirect is not None:
            raise redirect from None
        log.error("Something went wrong when opening the page")
        raise
    finally:
        opening = False

    if redirect is not None:
        raise redirect

    if status is not None and status >= 400:
        try:
            status_text = HTTPStatus(status).phrase
        except ValueError:
            status_text = ""
        raise StatusError(status, status_text)

    log.debug("Page opened.")


@stop_guard
async def find_links(scope: Scope, log: Log, ctx: StepContext) -> None:
    if ctx.finder is None:
        log.debug("No finder defined.")
        return

    page = scope.page
    assert page is not None
    finder = ctx.finder
    timeout_ms = finder.timeout(ctx.config.runnable_timeout)

    page.set_logger(log, "finder")
    log.debug("Trying to run finder.")
    try:
        urls = await run_with_timeout(
            page.evaluate(finder.get_runnable(), *finder.parameters), timeout_ms, "Finder"
        )
    except ProcessCrashError:
        raise
    except Exception as e:
        log.error(f"Finder failed: {e}")
        scope.result.finder_error = e
        return

    if not isinstance(urls, list):
        log.error(f"Given finder returned non-list value: {type(urls).__name__}")
        return

    log.info(f"Finder discovered {len(urls)} URLs.")
    for url in urls:
        if not isinstance(url, str):
            log.debug(f"Skipping non-string URL {url!r}")
            continue
        ctx.filter_engine.submit(finder.url_filter, url, scope.url, log=log)


async def _run_runner(scope: Scope, log: Log, ctx: StepContext, runner: RunnerRegistration) -> RunnerResult:
    page = scope.page
    assert page is not None
    key = runner.key

    page.set_logger(log, f"runner '{key}'")
    try:
        companion_files = await runner.companion_files()
        for filename in companion_files:
            await page.inject_script(filename)
            log.debug(f"Injected companion file '{filename}' for runner '{key}'")
    except ProcessCrashError:
        raise
    except Exception as e:
        log.error(f"Failed to inject companion files for runner '{key}' on {scope.url}: {e}")
        return RunnerResult(error=e)

    timeout_ms = runner.timeout(ctx.config.runnable_timeout)
    log.info(f"Runner '{key}' started.")
    try:
        raw = await run_with_timeout(
            page.evaluate(runner.get_runnable(), *runner.parameters),
            timeout_ms,
            f"Runner '{key}'",
        )
    except ProcessCrashError:
        raise
    except Exception as e:
        log.error(f"Runner '{key}' failed: {e}")
        return RunnerResult(error=e)

    try:
        value = await runner.apply_transform(raw)
    except Exception as e:
        log.error(f"Transforming result of runner '{key}' failed: {e}")
        error = TransformationError(f"Runner '{key}' result transform failed: {e}")
        error.__cause__ = e
        return RunnerResult(error=error)

    log.info(f"Runner '{key}' finished.")
    return RunnerResult(result=value)


@stop_guard
async def run_page_runners(scope: Scope, log: Log, ctx: StepContext) -> None:
    if not ctx.runners:
        log.debug("No runners defined")
        return

    results: dict[str, RunnerResult] = {}
    scope.result.runners = results
    for runner in ctx.runners:
        results[runner.key] = await _run_runner(scope, log, ctx, runner)


PAGE_STEPS: tuple[Step, ...] = (
    acquire_browser,
    create_page,
    set_page_settings,
    open_page,
    find_links,
    run_page_runners,
)
