"""Custom exceptions for CrawlKit.

Attempt-level errors end the page pipeline and go through the scheduler's retry
policy. Only ProcessCrashError and AttemptTimeoutError are retried; everything
else is recorded on the first occurrence. Stage-level errors (RunnableError,
RunnableTimeoutError, TransformationError) are recorded against a single runner
or the finder and never stop the pipeline.
"""

from typing import Any


class CrawlKitError(Exception):
    """Base exception for all CrawlKit errors."""

    def details(self) -> dict[str, Any]:
        """Extra fields carried into the serialized result document."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": str(self), **self.details()}


class ConfigError(CrawlKitError):
    """Raised when configuration is invalid or cannot be loaded."""


class CrawlError(CrawlKitError):
    """Raised when a page attempt fails."""


class AlreadySetError(CrawlKitError):
    """Raised when a scope handle is set twice without being cleared."""


class InvalidUrlError(CrawlKitError):
    """Raised when a URL cannot be parsed or resolved."""

    def __init__(self, url: str, reason: str | None = None) -> None:
        message = f"Invalid URL {url!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.url = url

    def details(self) -> dict[str, Any]:
        return {"url": self.url}


# ========== Attempt-level errors ==========


class ProcessCrashError(CrawlError):
    """Raised when the external browser process died or became unusable.

    The browser handle is destroyed instead of being returned to the pool and
    the page is retried.
    """


class AttemptTimeoutError(CrawlError, TimeoutError):
    """Raised when a whole page attempt exceeded the crawler timeout."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Worker timed out after {timeout_ms}ms.")
        self.timeout_ms = timeout_ms

    def details(self) -> dict[str, Any]:
        return {"timeout": self.timeout_ms}


class StatusError(CrawlError):
    """Raised when the primary navigation answered with status >= 400."""

    def __init__(self, code: int, status_text: str = "") -> None:
        super().__init__(f"{code} {status_text}".strip())
        self.code = code
        self.status_text = status_text

    def details(self) -> dict[str, Any]:
        return {"code": self.code}


class PageOpenError(CrawlError):
    """Raised when the browser could not open the page at all."""


class RedirectError(CrawlError):
    """Signals that the page asked to navigate to another URL.

    A followed redirect is informational: the target was queued and the page
    itself is not processed further. A redirect rejected by the redirect
    filter is a terminal error for the page.
    """

    def __init__(self, source_url: str, target_url: str, followed: bool) -> None:
        if followed:
            message = f"Page for {source_url} redirected to {target_url}"
        else:
            message = f"URL {target_url} was not followed"
        super().__init__(message)
        self.source_url = source_url
        self.target_url = target_url
        self.followed = followed

    def details(self) -> dict[str, Any]:
        return {"targetUrl": self.target_url}


class BrowserLaunchError(CrawlError):
    """Raised when a browser process could not be created or seeded with cookies."""


class PoolClosedError(CrawlError):
    """Raised when acquiring from a pool that is draining."""


# ========== Stage-level errors ==========


class RunnableError(CrawlKitError):
    """Error reported by a page-side runnable through its callback.

    The payload is whatever the page passed as the callback's first argument.
    """

    def __init__(self, payload: Any) -> None:
        super().__init__(str(payload))
        self.payload = payload

    def to_dict(self) -> dict[str, Any]:
        # Page code usually reports plain strings or objects; keep them as-is.
        if isinstance(self.payload, (dict, list, int, float, bool)):
            return {"type": type(self).__name__, "message": str(self), "payload": self.payload}
        return super().to_dict()


class RunnableTimeoutError(CrawlKitError, TimeoutError):
    """Raised when a finder or runner did not call back in time."""

    def __init__(self, label: str, timeout_ms: int) -> None:
        super().__init__(f"{label} timed out after {timeout_ms}ms.")
        self.timeout_ms = timeout_ms

    def details(self) -> dict[str, Any]:
        return {"timeout": self.timeout_ms}


class TransformationError(CrawlKitError):
    """Raised when a runner's result transform failed."""


def is_retryable(error: BaseException | None) -> bool:
    """Return True for crash-class errors.

    Crash-class errors taint the browser handle: it is destroyed rather than
    released, and the page is eligible for another attempt.
    """
    return isinstance(error, (ProcessCrashError, AttemptTimeoutError))


def serialize_error(error: BaseException) -> dict[str, Any]:
    """Convert any exception into the result document's error shape."""
    if isinstance(error, CrawlKitError):
        return error.to_dict()
    return {"type": type(error).__name__, "message": str(error)}
