"""JSON output for crawl results.

Batch crawls are written as one document. Streaming crawls are written
incrementally: the same document shape, one ``"url": result`` member appended
per finished page, so output is usable while a long crawl is still running.

Document shape:
    {"results": {"http://example.com/": {"runners": {"title": {"result": "..."}}}}}
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import AsyncIterable
from pathlib import Path  # noqa: TC003 - needed at runtime for mkdir()
from typing import Any

import aiofiles

from crawlkit.results import CrawlReport, PageResult

logger = logging.getLogger(__name__)


def to_json(document: Any, indent: int | None = 2) -> str:
    # Runner results are whatever the page sent back; stringify the rest
    return json.dumps(document, indent=indent, ensure_ascii=False, default=str)


async def write_report(report: CrawlReport, path: Path | None = None) -> None:
    """Write a batch report to ``path`` (stdout when None)."""
    content = to_json(report.to_dict()) + "\n"
    if path is None:
        sys.stdout.write(content)
        sys.stdout.flush()
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(content)
    logger.info(f"Wrote {len(report)} results to {path}")


class JsonStreamWriter:
    """Incremental writer for the results document.

    Example:
        async with JsonStreamWriter(Path("out.json")) as writer:
            async for url, result in crawler.crawl(stream=True):
                await writer.write(url, result)

    The document is closed on exit, also when the crawl failed, so whatever
    was written stays valid JSON.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.count = 0
        self._file: Any = None

    async def __aenter__(self) -> JsonStreamWriter:
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = await aiofiles.open(self.path, "w", encoding="utf-8")
        await self._emit('{"results": {')
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        try:
            await self._emit("\n}}\n")
        finally:
            if self._file is not None:
                await self._file.close()
                self._file = None
        if self.path is not None:
            logger.info(f"Streamed {self.count} results to {self.path}")

    async def write(self, url: str, result: PageResult) -> None:
        separator = "," if self.count else ""
        member = f"{separator}\n{to_json(url)}: {to_json(result.to_dict(), indent=None)}"
        await self._emit(member)
        self.count += 1

    async def _emit(self, text: str) -> None:
        if self._file is None:
            sys.stdout.write(text)
            sys.stdout.flush()
        else:
            await self._file.write(text)
            await self._file.flush()


async def write_stream(
    results: AsyncIterable[tuple[str, PageResult]], path: Path | None = None
) -> int:
    """Consume a result stream into an incrementally written document.

    Returns:
        Number of results written
    """
    async with JsonStreamWriter(path) as writer:
        async for url, result in results:
            await writer.write(url, result)
    return writer.count
