"""Configuration system.

Pydantic models for crawler settings and YAML job files, with type-safe
validation, sensible defaults and clear error messages. Entry points:
load_config() for a bare crawler configuration and load_job() for a complete
job (start URL, crawler settings, finder and runners).

CrawlerConfig is frozen: a crawl takes a snapshot of it when it starts, so a
running crawl never observes later changes.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from crawlkit.exceptions import ConfigError

# Default timeout for finders and runners that do not declare their own
DEFAULT_RUNNABLE_TIMEOUT_MS = 10000


def follow_all(target_url: str, source_url: str) -> str:
    """Default redirect filter: follow every redirect unchanged."""
    return target_url


class BrowserCookie(BaseModel):
    """A cookie injected into every browser instance when it is created.

    Either ``url`` or ``domain`` must be given so the browser can scope it.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Cookie name")
    value: str = Field(..., description="Cookie value")
    url: str | None = Field(default=None, description="URL the cookie belongs to")
    domain: str | None = Field(default=None, description="Cookie domain, e.g. '.example.com'")
    path: str = Field(default="/", description="Cookie path")
    expires: float | None = Field(default=None, description="Unix timestamp (None = session)")
    http_only: bool = Field(default=False, description="Hide cookie from page scripts")
    secure: bool = Field(default=False, description="Only send over HTTPS")
    same_site: Literal["Strict", "Lax", "None"] | None = Field(
        default=None, description="SameSite policy"
    )

    @model_validator(mode="after")
    def validate_scope(self) -> "BrowserCookie":
        if not self.url and not self.domain:
            raise ValueError(
                f"cookie {self.name!r} needs either 'url' or 'domain' so the browser can scope it"
            )
        return self

    def to_browser_dict(self) -> dict[str, Any]:
        """Cookie in the shape browser bindings expect (camelCase keys, no None values)."""
        cookie: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.url:
            # Browsers reject url together with domain/path
            cookie["url"] = self.url
        else:
            cookie["domain"] = self.domain
            cookie["path"] = self.path
        if self.expires is not None:
            cookie["expires"] = self.expires
        if self.http_only:
            cookie["httpOnly"] = True
        if self.secure:
            cookie["secure"] = True
        if self.same_site:
            cookie["sameSite"] = self.same_site
        return cookie


class CrawlerConfig(BaseModel):
    """Crawler settings.

    Timeouts are in milliseconds. ``timeout`` bounds one whole page attempt
    (acquire browser, open, find links, run runners); 0 disables it.
    ``runnable_timeout`` is the default for finders and runners that do not
    declare their own timeout.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = Field(
        default=None,
        description="Crawler name, used to tell crawls apart in log output",
    )
    timeout: int = Field(
        default=30000,
        ge=0,
        description="Per-attempt timeout in ms (0 = no attempt timeout)",
    )
    runnable_timeout: int = Field(
        default=DEFAULT_RUNNABLE_TIMEOUT_MS,
        ge=1,
        description="Default finder/runner timeout in ms",
    )
    concurrency: int = Field(
        default=1,
        ge=1,
        description="Number of concurrent pages, which is also the number of browser processes",
    )
    tries: int = Field(
        default=3,
        ge=0,
        validation_alias=AliasChoices("tries", "retries"),
        description=(
            "Maximum attempts for a page whose browser crashed or timed out. "
            "Other failures are never retried."
        ),
    )
    browser_parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Launch parameters passed through to the browser process",
    )
    page_settings: dict[str, Any] = Field(
        default_factory=dict,
        description="Settings applied to every page (e.g. user_agent, extra_http_headers)",
    )
    follow_redirects: bool = Field(
        default=False,
        description=(
            "Follow redirects by queueing the target. When disabled, in-page "
            "navigation is blocked and the page is processed as delivered."
        ),
    )
    browser_cookies: list[BrowserCookie] = Field(
        default_factory=list,
        description="Cookies added to every browser instance",
    )
    redirect_filter: Callable[[str, str], str | bool] = Field(
        default=follow_all,
        exclude=True,
        description="(target_url, source_url) -> URL to follow or False to reject",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        """Names end up in logger prefixes, so keep them to one plain token."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("name cannot be empty. Omit it or use a descriptive name.")
        if v != v.strip() or any(char.isspace() for char in v):
            raise ValueError(f"name cannot contain whitespace: {v!r}")
        return v


class RunnableSpec(BaseModel):
    """A finder or runner referenced from a job file.

    ``object`` is an import reference: ``package.module:ClassName`` or
    ``path/to/file.py:ClassName``. ``options`` are passed to the class
    constructor; ``parameters`` are appended to the page-side function call.
    """

    object: str = Field(..., min_length=1, description="Import reference 'module:Class'")
    parameters: list[Any] = Field(default_factory=list, description="Page-side parameters")
    options: dict[str, Any] = Field(default_factory=dict, description="Constructor kwargs")
    timeout: int | None = Field(default=None, ge=1, description="Timeout override in ms")

    @field_validator("object")
    @classmethod
    def validate_object(cls, v: str) -> str:
        module, sep, attr = v.rpartition(":")
        if not sep or not module or not attr:
            raise ValueError(f"expected 'module:ClassName', got {v!r}")
        return v


class JobConfig(BaseModel):
    """A complete crawl job as stored in a YAML file."""

    url: str = Field(..., min_length=1, description="Start URL")
    crawler: CrawlerConfig = Field(
        default_factory=CrawlerConfig,
        description="Crawler settings",
    )
    finder: RunnableSpec | None = Field(
        default=None,
        description="Link finder (omit to crawl only the start URL)",
    )
    runners: dict[str, RunnableSpec] = Field(
        default_factory=dict,
        description="Runners keyed by result id, executed in file order",
    )


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    if not path.is_file():
        raise ValueError(f"Configuration path is not a file: {path}")

    with path.open("r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError(f"Configuration file is empty: {path}")

    if not isinstance(config_dict, dict):
        raise ValueError(
            f"Configuration file must contain a YAML object/dict, "
            f"got {type(config_dict).__name__}"
        )
    return config_dict


def load_job(path: Path) -> JobConfig:
    """Load and validate a YAML job file.

    Args:
        path: Path to YAML job file

    Returns:
        Validated JobConfig instance

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation
    """
    try:
        return JobConfig(**_read_yaml(path))
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}:\n{e}") from e
    except ValueError as e:
        raise ConfigError(str(e)) from e


def load_config(path: Path) -> CrawlerConfig:
    """Load and validate a YAML file holding only crawler settings.

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation
    """
    try:
        return CrawlerConfig(**_read_yaml(path))
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}:\n{e}") from e
    except ValueError as e:
        raise ConfigError(str(e)) from e
