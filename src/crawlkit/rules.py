"""URL normalization and filtering.

URLNormalizer keeps URLs consistent so the crawl's seen-map deduplicates
reliably. UrlFilterEngine applies the user-supplied accept/reject/rewrite
filters to discovered links and redirect targets and queues what survives.
"""

import logging
import re
from collections.abc import Callable
from typing import Literal
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

from crawlkit.exceptions import InvalidUrlError

logger = logging.getLogger(__name__)

# "scheme:" not followed by a port number
SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:(?!\d)")

# (url, origin_url) -> url to queue, or False to discard
UrlFilter = Callable[[str, str], str | bool]


class URLNormalizer:
    """Centralized URL normalization and resolution.

    Utilities for:
    - Normalizing URLs (lowercase scheme/hostname, remove default ports,
      resolve dot segments, always have a path)
    - Resolving relative URLs against the page they were found on
    - Defaulting scheme-less URLs to http://
    """

    SAFE_SCHEMES = {"http", "https"}

    DEFAULT_PORTS = {
        "http": 80,
        "https": 443,
    }

    DEFAULT_SCHEME = "http"

    @staticmethod
    def normalize_url(url: str) -> str:
        """Normalize an absolute URL.

        Normalizations applied:
        - Convert scheme and hostname to lowercase
        - Remove default ports (http://example.com:80 -> http://example.com/)
        - Use "/" as path when the path is empty
        - Remove "." and ".." path segments

        Query and fragment are kept: pages that differ only by fragment are
        distinct crawl entries.

        Raises:
            InvalidUrlError: If the URL is empty, relative, not http(s) or malformed

        Examples:
            >>> URLNormalizer.normalize_url("HTTP://Example.COM:80")
            'http://example.com/'

            >>> URLNormalizer.normalize_url("http://example.com/a/../b.html#top")
            'http://example.com/b.html#top'
        """
        if not url or not url.strip():
            raise InvalidUrlError(url, "URL cannot be empty")

        try:
            parsed = urlparse(url.strip())
            scheme = parsed.scheme.lower()
            hostname = parsed.hostname
            port = parsed.port
        except ValueError as e:
            raise InvalidUrlError(url, str(e)) from e

        if scheme not in URLNormalizer.SAFE_SCHEMES:
            raise InvalidUrlError(url, f"unsupported scheme {scheme or '(none)'!r}")
        if not hostname:
            raise InvalidUrlError(url, "missing host")

        netloc = hostname.lower()
        if ":" in netloc:
            # IPv6 literal
            netloc = f"[{netloc}]"
        if port is not None and port != URLNormalizer.DEFAULT_PORTS.get(scheme):
            netloc = f"{netloc}:{port}"

        if parsed.username:
            auth = parsed.username
            if parsed.password:
                auth = f"{auth}:{parsed.password}"
            netloc = f"{auth}@{netloc}"

        path = URLNormalizer.remove_dot_segments(parsed.path) or "/"

        return urlunparse((scheme, netloc, path, parsed.params, parsed.query, parsed.fragment))

    @staticmethod
    def remove_dot_segments(path: str) -> str:
        """Resolve "." and ".." segments (RFC 3986 section 5.2.4)."""
        if "." not in path:
            return path

        output: list[str] = []
        segments = path.split("/")
        for i, segment in enumerate(segments):
            last = i == len(segments) - 1
            if segment == ".":
                if last:
                    output.append("")
            elif segment == "..":
                if len(output) > 1:
                    output.pop()
                if last:
                    output.append("")
            else:
                output.append(segment)

        result = "/".join(output)
        if path.startswith("/") and not result.startswith("/"):
            result = "/" + result
        return result

    @staticmethod
    def document_url(url: str) -> str:
        """Normalized URL of the document itself, without its fragment.

        Browsers never send the fragment, so this is what a request for the
        page looks like on the wire.

        Raises:
            InvalidUrlError: If the URL cannot be normalized

        Examples:
            >>> URLNormalizer.document_url("http://Example.com/#hash")
            'http://example.com/'
        """
        return urldefrag(URLNormalizer.normalize_url(url)).url

    @staticmethod
    def with_default_scheme(url: str) -> str:
        """Add http:// to URLs written without a scheme.

        URLs that already carry a scheme (including non-http ones such as
        mailto:) are returned unchanged.

        Examples:
            >>> URLNormalizer.with_default_scheme("//localhost:8080/docs")
            'http://localhost:8080/docs'

            >>> URLNormalizer.with_default_scheme("example.com/")
            'http://example.com/'
        """
        url = url.strip()
        if url.startswith("//"):
            return f"{URLNormalizer.DEFAULT_SCHEME}:{url}"
        if "://" not in url and not SCHEME_RE.match(url):
            return f"{URLNormalizer.DEFAULT_SCHEME}://{url}"
        return url

    @staticmethod
    def resolve(url: str, base_url: str) -> str:
        """Resolve ``url`` against ``base_url`` and normalize the result.

        Raises:
            InvalidUrlError: If either URL cannot be resolved to an http(s) URL
        """
        if not isinstance(url, str) or not url.strip():
            raise InvalidUrlError(str(url), "URL cannot be empty")
        try:
            absolute = urljoin(base_url, url.strip())
        except ValueError as e:
            raise InvalidUrlError(url, str(e)) from e
        return URLNormalizer.normalize_url(absolute)


def apply_url_filter(
    filter_fn: UrlFilter | None, url: str, origin_url: str
) -> str | Literal[False]:
    """Resolve a URL against its origin and run it through a filter.

    The filter receives the absolute URL and the normalized origin. It may
    return False to discard the URL, the same URL to accept it, or another
    (possibly relative) URL that is resolved against the origin and used
    instead.

    Returns:
        The absolute URL to queue, or False if the filter discarded it

    Raises:
        InvalidUrlError: If the URL or the rewritten URL cannot be resolved
        Exception: Whatever the filter itself raises
    """
    origin = URLNormalizer.normalize_url(origin_url)
    absolute_url = URLNormalizer.resolve(url, origin)

    if filter_fn is None:
        return absolute_url

    rewritten = filter_fn(absolute_url, origin)
    if rewritten is False:
        return False
    if rewritten is True or rewritten == absolute_url:
        return absolute_url
    if not isinstance(rewritten, str):
        raise InvalidUrlError(repr(rewritten), "URL filter returned neither a URL nor False")
    return URLNormalizer.resolve(rewritten, origin)


class UrlFilterEngine:
    """Filters URLs found on a page and queues the accepted ones.

    One engine serves both the finder's discovered links and redirect targets,
    so both go through the same resolve, filter and rewrite rules. Failures
    affect only the URL at hand: it is logged and dropped.

    Example:
        >>> engine = UrlFilterEngine(crawler.add_url)
        >>> engine.submit(finder.url_filter, "/about", "http://example.com/")
        'http://example.com/about'
    """

    def __init__(self, add_url: Callable[[str], object]) -> None:
        """Initialize filter engine.

        Args:
            add_url: Callback queueing an absolute URL (deduplication is its job)
        """
        self._add_url = add_url

    def submit(
        self,
        filter_fn: UrlFilter | None,
        url: str,
        origin_url: str,
        log: logging.Logger | logging.LoggerAdapter[logging.Logger] = logger,
    ) -> str | Literal[False]:
        """Filter ``url`` and queue it if accepted.

        Returns:
            The queued absolute URL, or False if it was discarded or invalid
        """
        try:
            state = apply_url_filter(filter_fn, url, origin_url)
        except Exception as e:
            log.debug(f"Error on URL filter ({url}, {origin_url}): {type(e).__name__}: {e}")
            return False

        if state is False:
            log.debug(f"URL {url} ignored due to URL filter.")
            return False

        if state != url:
            log.debug(f"{url} was rewritten to {state}.")
        self._add_url(state)
        return state
