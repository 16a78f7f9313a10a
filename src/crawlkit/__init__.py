"""CrawlKit - concurrent headless-browser crawler."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("crawlkit")
except PackageNotFoundError:
    __version__ = "dev"
