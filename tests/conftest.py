"""Pytest fixtures for CrawlKit tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fakes import FakeLauncher, FakeSite

from crawlkit.config import CrawlerConfig
from crawlkit.crawler import CrawlKit

START_URL = "http://example.com/"


@pytest.fixture
def site() -> FakeSite:
    """A fake site with a single healthy start page."""
    fake_site = FakeSite()
    fake_site.add(START_URL)
    return fake_site


@pytest.fixture
def launcher(site: FakeSite) -> FakeLauncher:
    return FakeLauncher(site)


@pytest.fixture
def make_crawler(launcher: FakeLauncher) -> Callable[..., CrawlKit]:
    """Factory for crawlers wired to the fake launcher.

    Keyword arguments become CrawlerConfig settings. Timeouts default to small
    values so hanging pages fail fast.

    Example:
        >>> def test_something(make_crawler):
        ...     crawler = make_crawler(concurrency=2)
    """

    def factory(url: str = START_URL, **settings: Any) -> CrawlKit:
        settings.setdefault("timeout", 2000)
        settings.setdefault("runnable_timeout", 500)
        return CrawlKit(url, config=CrawlerConfig(**settings), launcher=launcher)

    return factory


@pytest.fixture
def companion_file(tmp_path: Path) -> Path:
    path = tmp_path / "helpers.js"
    path.write_text("window.helpers = {};\n", encoding="utf-8")
    return path


@pytest.fixture
def write_job(tmp_path: Path) -> Callable[..., Path]:
    """Write a YAML job file into tmp_path and return its path."""

    def write(content: str, name: str = "job.yaml") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return write
