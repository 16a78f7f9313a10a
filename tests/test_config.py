"""Tests for configuration models and YAML loading."""

from collections.abc import Callable
from pathlib import Path

import pytest
from pydantic import ValidationError

from crawlkit.config import (
    DEFAULT_RUNNABLE_TIMEOUT_MS,
    BrowserCookie,
    CrawlerConfig,
    RunnableSpec,
    follow_all,
    load_config,
    load_job,
)
from crawlkit.exceptions import ConfigError


class TestCrawlerConfig:
    def test_defaults(self) -> None:
        config = CrawlerConfig()

        assert config.name is None
        assert config.timeout == 30000
        assert config.runnable_timeout == DEFAULT_RUNNABLE_TIMEOUT_MS == 10000
        assert config.concurrency == 1
        assert config.tries == 3
        assert config.follow_redirects is False
        assert config.redirect_filter is follow_all
        assert config.browser_cookies == []

    def test_is_frozen(self) -> None:
        config = CrawlerConfig()
        with pytest.raises(ValidationError):
            config.concurrency = 4  # type: ignore[misc]

    def test_retries_alias(self) -> None:
        assert CrawlerConfig(retries=5).tries == 5  # type: ignore[call-arg]

    @pytest.mark.parametrize(
        "settings",
        [
            {"concurrency": 0},
            {"timeout": -1},
            {"runnable_timeout": 0},
            {"tries": -1},
            {"name": "   "},
            {"name": "two words"},
        ],
    )
    def test_invalid_settings(self, settings: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            CrawlerConfig(**settings)  # type: ignore[arg-type]

    def test_redirect_filter_is_not_dumped(self) -> None:
        config = CrawlerConfig(redirect_filter=lambda target, source: False)
        assert "redirect_filter" not in config.model_dump()


class TestBrowserCookie:
    def test_requires_url_or_domain(self) -> None:
        with pytest.raises(ValidationError, match="needs either 'url' or 'domain'"):
            BrowserCookie(name="a", value="b")

    def test_browser_dict_with_url_omits_domain_and_path(self) -> None:
        cookie = BrowserCookie(name="a", value="b", url="http://example.com/", domain="example.com")
        assert cookie.to_browser_dict() == {"name": "a", "value": "b", "url": "http://example.com/"}

    def test_browser_dict_flags(self) -> None:
        cookie = BrowserCookie(
            name="a",
            value="b",
            domain=".example.com",
            path="/app",
            expires=1700000000,
            secure=True,
            same_site="Lax",
        )
        assert cookie.to_browser_dict() == {
            "name": "a",
            "value": "b",
            "domain": ".example.com",
            "path": "/app",
            "expires": 1700000000,
            "secure": True,
            "sameSite": "Lax",
        }


class TestRunnableSpec:
    @pytest.mark.parametrize("reference", ["crawlkit.finders", ":Class", "module:"])
    def test_rejects_bad_reference(self, reference: str) -> None:
        with pytest.raises(ValidationError, match="module:ClassName"):
            RunnableSpec(object=reference)

    def test_windows_style_path_reference(self) -> None:
        spec = RunnableSpec(object="C:/runners/title.py:TitleRunner")
        assert spec.object.endswith(":TitleRunner")


class TestLoadJob:
    def test_full_job(self, write_job: Callable[..., Path]) -> None:
        path = write_job(
            """
url: http://example.com/
crawler:
  name: docs
  concurrency: 4
  retries: 2
  follow_redirects: true
  page_settings:
    user_agent: DocsBot/1.0
  browser_cookies:
    - name: session
      value: abc
      domain: example.com
finder:
  object: crawlkit.finders:GenericAnchorsFinder
  parameters: [100]
runners:
  title:
    object: runners/title.py:TitleRunner
    options:
      selector: h1
    timeout: 5000
"""
        )

        job = load_job(path)

        assert job.url == "http://example.com/"
        assert job.crawler.name == "docs"
        assert job.crawler.concurrency == 4
        assert job.crawler.tries == 2
        assert job.crawler.follow_redirects is True
        assert job.crawler.page_settings == {"user_agent": "DocsBot/1.0"}
        assert job.crawler.browser_cookies[0].name == "session"
        assert job.finder is not None
        assert job.finder.parameters == [100]
        assert job.runners["title"].options == {"selector": "h1"}
        assert job.runners["title"].timeout == 5000

    def test_minimal_job_uses_defaults(self, write_job: Callable[..., Path]) -> None:
        job = load_job(write_job("url: example.com\n"))

        assert job.crawler == CrawlerConfig()
        assert job.finder is None
        assert job.runners == {}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_job(tmp_path / "missing.yaml")

    def test_directory_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not a file"):
            load_job(tmp_path)

    def test_empty_file(self, write_job: Callable[..., Path]) -> None:
        with pytest.raises(ConfigError, match="empty"):
            load_job(write_job(""))

    def test_non_mapping(self, write_job: Callable[..., Path]) -> None:
        with pytest.raises(ConfigError, match="YAML object/dict"):
            load_job(write_job("- just\n- a list\n"))

    def test_invalid_yaml(self, write_job: Callable[..., Path]) -> None:
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_job(write_job("url: [unclosed\n"))

    def test_validation_error(self, write_job: Callable[..., Path]) -> None:
        with pytest.raises(ConfigError, match="validation failed"):
            load_job(write_job("url: http://example.com/\ncrawler:\n  concurrency: 0\n"))


def test_load_config(write_job: Callable[..., Path]) -> None:
    config = load_config(write_job("timeout: 0\ntries: 1\n", name="crawler.yaml"))

    assert config.timeout == 0
    assert config.tries == 1
