"""Tests for result documents, aggregation and JSON output."""

import json
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from crawlkit.exceptions import RunnableError, StatusError
from crawlkit.outputs import JsonStreamWriter, write_report, write_stream
from crawlkit.results import CrawlReport, PageResult, ResultAggregator, RunnerResult


class TestPageResult:
    def test_empty_result(self) -> None:
        result = PageResult()
        assert result.ok
        assert result.to_dict() == {}

    def test_error_document(self) -> None:
        result = PageResult(error=StatusError(404, "Not Found"))

        assert not result.ok
        assert result.to_dict() == {
            "error": {"type": "StatusError", "message": "404 Not Found", "code": 404}
        }

    def test_runner_and_finder_documents(self) -> None:
        result = PageResult(
            runners={
                "title": RunnerResult(result="Hello"),
                "table": RunnerResult(error=RunnableError("no table")),
            },
            finder_error=ValueError("bad selector"),
        )

        assert result.ok
        assert result.to_dict() == {
            "runners": {
                "title": {"result": "Hello"},
                "table": {"error": {"type": "RunnableError", "message": "no table"}},
            },
            "finder": {"error": {"type": "ValueError", "message": "bad selector"}},
        }


class TestResultAggregator:
    def test_batch_mode_keeps_results_in_discovery_order(self) -> None:
        aggregator = ResultAggregator()
        aggregator.register("http://h/a")
        aggregator.register("http://h/b")
        aggregator.register("http://h/c")

        aggregator.record("http://h/b", PageResult())
        aggregator.record("http://h/a", PageResult(redirected_to="http://h/c"))

        report = aggregator.report()
        # Unfinished URLs are left out
        assert list(report.results) == ["http://h/a", "http://h/b"]
        assert aggregator.seen_count == 3
        assert aggregator.recorded == 2

    def test_streaming_mode_keeps_only_the_seen_set(self) -> None:
        aggregator = ResultAggregator(streaming=True)
        aggregator.register("http://h/a")
        result = PageResult()

        assert aggregator.record("http://h/a", result) == ("http://h/a", result)
        assert aggregator.is_seen("http://h/a")
        with pytest.raises(RuntimeError):
            aggregator.report()

    def test_recording_unknown_url_fails(self) -> None:
        with pytest.raises(KeyError):
            ResultAggregator().record("http://h/x", PageResult())


def make_report() -> CrawlReport:
    return CrawlReport(
        results={
            "http://h/": PageResult(runners={"title": RunnerResult(result="Ünïcode")}),
            "http://h/missing": PageResult(error=StatusError(404, "Not Found")),
        }
    )


async def test_write_report_to_file(tmp_path: Path) -> None:
    path = tmp_path / "out" / "report.json"

    await write_report(make_report(), path)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["results"]["http://h/"] == {"runners": {"title": {"result": "Ünïcode"}}}
    assert document["results"]["http://h/missing"]["error"]["code"] == 404


async def test_write_report_to_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    await write_report(make_report())

    document = json.loads(capsys.readouterr().out)
    assert list(document["results"]) == ["http://h/", "http://h/missing"]


async def test_non_json_values_are_stringified(tmp_path: Path) -> None:
    path = tmp_path / "report.json"
    report = CrawlReport(results={"http://h/": PageResult(runners={"x": RunnerResult(result=path)})})

    await write_report(report, path)

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["results"]["http://h/"]["runners"]["x"]["result"] == str(path)


async def test_stream_writer_produces_valid_json(tmp_path: Path) -> None:
    path = tmp_path / "stream.json"

    async def results() -> AsyncIterator[tuple[str, PageResult]]:
        yield "http://h/b", PageResult()
        yield "http://h/a", PageResult(redirected_to="http://h/c")

    count = await write_stream(results(), path)

    assert count == 2
    document = json.loads(path.read_text(encoding="utf-8"))
    assert list(document["results"]) == ["http://h/b", "http://h/a"]
    assert document["results"]["http://h/a"] == {"redirectedTo": "http://h/c"}


async def test_stream_writer_closes_document_on_failure(tmp_path: Path) -> None:
    path = tmp_path / "stream.json"

    with pytest.raises(RuntimeError):
        async with JsonStreamWriter(path) as writer:
            await writer.write("http://h/", PageResult())
            raise RuntimeError("crawl failed")

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document == {"results": {"http://h/": {}}}


async def test_empty_stream_to_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    async def nothing() -> AsyncIterator[tuple[str, PageResult]]:
        return
        yield  # pragma: no cover

    assert await write_stream(nothing()) == 0
    assert json.loads(capsys.readouterr().out) == {"results": {}}
