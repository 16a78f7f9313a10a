"""Command line interface.

CLI module using Typer with Rich-formatted output for the crawl and validate
commands. Results are JSON on stdout (or a file); everything meant for humans
goes to stderr so the output can be piped.
"""

# ruff: noqa: B008

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from crawlkit import __version__
from crawlkit.config import JobConfig, RunnableSpec, load_job
from crawlkit.crawler import CrawlKit, CrawlStats
from crawlkit.exceptions import ConfigError, CrawlKitError, InvalidUrlError
from crawlkit.finders import GenericAnchorsFinder
from crawlkit.loader import apply_job, build_runnable
from crawlkit.outputs import write_report, write_stream
from crawlkit.utils import format_duration, setup_logging

install_rich_traceback(show_locals=False)

console = Console(stderr=True)

app = typer.Typer(
    name="crawlkit",
    help="CrawlKit - concurrent headless-browser crawler",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"CrawlKit version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """CrawlKit - concurrent headless-browser crawler."""
    pass


def parse_runner_option(value: str) -> tuple[str, str]:
    """Split a ``key=module:Class`` runner option."""
    key, sep, reference = value.partition("=")
    if not sep or not key.strip() or not reference.strip():
        raise ConfigError(f"--runner expects KEY=module:Class, got {value!r}")
    return key.strip(), reference.strip()


async def run_crawl(crawler: CrawlKit, stream: bool, output: Path | None) -> CrawlStats | None:
    if stream:
        await write_stream(crawler.crawl(stream=True), output)
    else:
        report = await crawler.crawl()
        await write_report(report, output)
    return crawler.stats


@app.command()
def crawl(
    url: str | None = typer.Argument(
        None,
        help="Start URL (overrides the job file's url)",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML job file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    name: str | None = typer.Option(None, "--name", help="Crawler name for log output"),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-n", help="Number of concurrent browsers", min=1
    ),
    timeout: int | None = typer.Option(
        None, "--timeout", help="Per-attempt timeout in ms (0 = none)", min=0
    ),
    tries: int | None = typer.Option(
        None, "--tries", help="Maximum attempts for crashed or timed-out pages", min=0
    ),
    follow_redirects: bool | None = typer.Option(
        None,
        "--follow-redirects/--no-follow-redirects",
        help="Queue redirect targets instead of blocking navigation",
    ),
    discover: bool = typer.Option(
        False,
        "--discover",
        help="Follow every anchor on every page (generic anchors finder)",
    ),
    finder: str | None = typer.Option(
        None, "--finder", help="Finder class as module:Class"
    ),
    runner: list[str] | None = typer.Option(
        None, "--runner", "-r", help="Runner as KEY=module:Class (repeatable)"
    ),
    stream: bool = typer.Option(
        False, "--stream", help="Write results incrementally as pages finish"
    ),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write JSON to this file instead of stdout"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Crawl a site and write per-URL results as JSON.

    Settings come from the job file given with --config; command line options
    override them. Without a finder only the start URL is crawled.
    """
    setup_logging(verbose=verbose)

    try:
        base_dir = config.parent if config else Path.cwd()
        if config:
            console.print(f"[cyan]Loading job from:[/cyan] {config}")
            job = load_job(config)
            if url:
                job = job.model_copy(update={"url": url})
        elif url:
            job = JobConfig(url=url)
        else:
            console.print("[red]Error:[/red] Give a start URL or a job file with --config")
            raise typer.Exit(code=2)

        overrides = {
            key: value
            for key, value in {
                "name": name,
                "concurrency": concurrency,
                "timeout": timeout,
                "tries": tries,
                "follow_redirects": follow_redirects,
            }.items()
            if value is not None
        }

        crawler = CrawlKit(job.url, config=job.crawler)
        if overrides:
            crawler.configure(**overrides)
        apply_job(crawler, job, base_dir)

        if discover:
            crawler.set_finder(GenericAnchorsFinder())
        if finder:
            crawler.set_finder(build_runnable(RunnableSpec(object=finder), base_dir))
        for value in runner or []:
            key, reference = parse_runner_option(value)
            crawler.add_runner(key, build_runnable(RunnableSpec(object=reference), base_dir))

        console.print(f"[green]Starting crawl:[/green] {job.url}")
        stats = asyncio.run(run_crawl(crawler, stream, output))

        if stats is not None:
            console.print(
                f"[green]Crawl completed:[/green] {stats.pages_crawled} pages, "
                f"{stats.pages_failed} failed, {stats.retries} retries "
                f"in {format_duration(stats.duration)}"
            )
        if output:
            console.print(f"[cyan]Results written to:[/cyan] {output}")

    except typer.Exit:
        raise

    except (ConfigError, InvalidUrlError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1) from None

    except CrawlKitError as e:
        console.print(f"[red]Crawl failed:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Crawl interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None

    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        else:
            console.print("[dim]Use --verbose to see full traceback[/dim]")
        raise typer.Exit(code=1) from None


@app.command()
def validate(
    config_path: Path = typer.Argument(
        ...,
        help="Path to YAML job file to validate",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate a CrawlKit job file.

    Checks YAML syntax, validates all fields against the schema and imports
    the finder and runner classes the job refers to.
    """
    try:
        console.print(f"[cyan]Validating job:[/cyan] {config_path}")

        job = load_job(config_path)
        crawler = CrawlKit(job.url, config=job.crawler)
        apply_job(crawler, job, config_path.parent)

        console.print("[green][OK] Job is valid![/green]\n")

        settings = job.crawler
        table = Table(title="Job Summary")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Start URL", job.url)
        table.add_row("Name", settings.name or "[dim]none[/dim]")
        table.add_row("Concurrency", str(settings.concurrency))
        table.add_row("Timeout", f"{settings.timeout}ms" if settings.timeout else "none")
        table.add_row("Tries", str(settings.tries))
        table.add_row("Follow Redirects", "Yes" if settings.follow_redirects else "No")
        table.add_row("Cookies", str(len(settings.browser_cookies)))
        table.add_row("Finder", job.finder.object if job.finder else "[dim]none[/dim]")
        table.add_row("Runners", ", ".join(job.runners) or "[dim]none[/dim]")

        console.print(table)

    except ConfigError as e:
        console.print("[red][FAIL] Job validation failed:[/red]\n")
        console.print(str(e))
        raise typer.Exit(code=1) from None

    except Exception as e:
        console.print(f"[red][ERROR] Unexpected error:[/red] {e}")
        console.print_exception()
        raise typer.Exit(code=1) from None
