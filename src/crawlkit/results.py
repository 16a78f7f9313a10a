"""Per-URL results and their aggregation.

PageResult is the record a crawl produces for every URL. ResultAggregator owns
the crawl's seen-map (the at-most-once-per-URL guarantee) and, depending on the
mode chosen when the crawl starts, either keeps every result in memory (batch)
or only remembers which URLs were seen and hands results out as they complete
(streaming).
"""

from dataclasses import dataclass, field
from typing import Any

from crawlkit.exceptions import serialize_error


@dataclass
class RunnerResult:
    """Outcome of one runner on one page: a result or an error."""

    result: Any = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": serialize_error(self.error)}
        return {"result": self.result}


@dataclass
class PageResult:
    """Result for a single URL.

    ``error`` holds the attempt-level failure (status, crash after the last
    retry, timeout...). Stage-level failures stay inside ``runners`` and
    ``finder_error`` and never set ``error``.
    """

    error: BaseException | None = None
    runners: dict[str, RunnerResult] | None = None
    finder_error: BaseException | None = None
    redirected_to: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Result document for this URL; empty keys are omitted."""
        doc: dict[str, Any] = {}
        if self.error is not None:
            doc["error"] = serialize_error(self.error)
        if self.runners is not None:
            doc["runners"] = {key: value.to_dict() for key, value in self.runners.items()}
        if self.finder_error is not None:
            doc["finder"] = {"error": serialize_error(self.finder_error)}
        if self.redirected_to is not None:
            doc["redirectedTo"] = self.redirected_to
        return doc


@dataclass
class CrawlReport:
    """Batch-mode result of a crawl, keyed by normalized URL in discovery order."""

    results: dict[str, PageResult] = field(default_factory=dict)
    stats: Any = None  # CrawlStats, set by the crawler

    def __len__(self) -> int:
        return len(self.results)

    def __contains__(self, url: object) -> bool:
        return url in self.results

    def __getitem__(self, url: str) -> PageResult:
        return self.results[url]

    def to_dict(self) -> dict[str, Any]:
        return {"results": {url: result.to_dict() for url, result in self.results.items()}}


class ResultAggregator:
    """Seen-map plus result collection for one crawl.

    In batch mode the seen-map values are the recorded PageResults (None until
    a URL is finalized). In streaming mode values stay None so finished pages
    are not kept in memory.

    Example:
        >>> aggregator = ResultAggregator(streaming=False)
        >>> aggregator.register("http://example.com/")
        True
        >>> aggregator.register("http://example.com/")
        False
    """

    def __init__(self, streaming: bool = False) -> None:
        self.streaming = streaming
        self._seen: dict[str, PageResult | None] = {}
        self.recorded = 0

    def register(self, url: str) -> bool:
        """Mark a URL as seen. Returns False if it already was."""
        if url in self._seen:
            return False
        self._seen[url] = None
        return True

    def is_seen(self, url: str) -> bool:
        return url in self._seen

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def record(self, url: str, result: PageResult) -> tuple[str, PageResult]:
        """Store the final result for a URL and return the pair to emit."""
        if url not in self._seen:
            raise KeyError(f"Recording result for unregistered URL: {url}")
        if not self.streaming:
            self._seen[url] = result
        self.recorded += 1
        return url, result

    def report(self) -> CrawlReport:
        """Build the batch report. Only meaningful in batch mode."""
        if self.streaming:
            raise RuntimeError("Streaming aggregators do not keep results")
        return CrawlReport(
            results={url: result for url, result in self._seen.items() if result is not None}
        )
