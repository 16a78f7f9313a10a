"""One page attempt.

run_attempt() drives a scope through the page stages under the crawler's
attempt timeout, records the outcome on the scope and hands the borrowed
browser back: released when it is still healthy, destroyed after a crash-class
error or when the attempt was cancelled midway.
"""

import asyncio
import time

from crawlkit.exceptions import AttemptTimeoutError, RedirectError, is_retryable
from crawlkit.pool import BrowserPool
from crawlkit.scope import Scope
from crawlkit.steps import PAGE_STEPS, Log, StepContext
from crawlkit.utils import format_duration, get_task_logger


async def _run_steps(scope: Scope, log: Log, ctx: StepContext) -> Exception | None:
    timeout_ms = ctx.config.timeout
    deadline = asyncio.timeout(timeout_ms / 1000 if timeout_ms else None)
    try:
        async with deadline:
            for step in PAGE_STEPS:
                await step(scope, log, ctx)
    except TimeoutError as e:
        if deadline.expired():
            return AttemptTimeoutError(timeout_ms)
        return e
    except Exception as e:
        return e
    return None


async def release_handles(scope: Scope, log: Log, pool: BrowserPool, tainted: bool) -> None:
    """Close the page and return (or destroy) the browser of a finished attempt."""
    page = scope.page
    if page is not None:
        if not tainted:
            log.debug("Attempting to close page.")
            try:
                await page.close()
            except Exception as e:
                log.debug(f"Closing page failed: {e}")
        scope.clear_page()

    browser = scope.browser
    if browser is not None:
        scope.clear_browser()
        if tainted:
            log.info("Notifying pool to destroy browser instance.")
            await pool.destroy(browser)
        else:
            log.debug("Releasing browser instance to pool.")
            await pool.release(browser)


async def run_attempt(scope: Scope, ctx: StepContext, name: str | None = None) -> Exception | None:
    """Run one attempt for ``scope``.

    Returns:
        The attempt-level error recorded on ``scope.result.error``, or None.
        A followed redirect is not an error: it is recorded as
        ``scope.result.redirected_to``.
    """
    scope.retry()
    log = get_task_logger(scope.id, name)
    tries_log = f" (attempt {scope.tries})" if scope.tries > 1 else ""
    log.info(f"Took {scope.url} from queue{tries_log}.")
    start = time.monotonic()

    error: Exception | None = None
    completed = False
    try:
        error = await _run_steps(scope, log, ctx)
        completed = True
    finally:
        scope.stop()
        await release_handles(scope, log, ctx.pool, tainted=not completed or is_retryable(error))

    if isinstance(error, RedirectError) and error.followed:
        log.info(str(error))
        scope.result.redirected_to = error.target_url
        error = None
    elif error is not None:
        log.error(f"{type(error).__name__}: {error}")
        scope.result.error = error

    log.info(f"Finished. Took {format_duration(time.monotonic() - start)}.")
    return error

