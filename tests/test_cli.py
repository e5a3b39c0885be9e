import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from starlette.applications import Starlette

from graphgate import __version__, log
from graphgate.cli import cli
from tests.conftest import REVIEWS_TYPE_DEFS


@pytest.fixture(scope="module")
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def uvicorn_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_run(app: Any, **kwargs: Any) -> None:
        calls.append({"app": app, **kwargs})

    monkeypatch.setattr("graphgate.cli.uvicorn.run", fake_run)
    return calls


@pytest.fixture
def merged_config(tmp_path: Path) -> Path:
    (tmp_path / "reviews.graphql").write_text(REVIEWS_TYPE_DEFS, encoding="utf-8")
    path = tmp_path / "gateway.yaml"
    path.write_text(
        """
services:
  - name: book-service
    merge:
      Book: {fieldName: bookById}
  - name: review-service
    url: http://localhost:4010/graphql
    schemaPath: reviews.graphql
    merge:
      Book: {fieldName: reviewsForBook}
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def restore_log_handlers() -> Iterator[None]:
    handlers = list(log.handlers)
    yield
    for handler in log.handlers:
        if handler not in handlers:
            handler.close()
    log.handlers = handlers
    log.setLevel(logging.INFO)


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_compose_prints_the_composed_sdl(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["compose"])
    assert result.exit_code == 0, result.output
    assert "bookById(id: ID!): Book" in result.output
    assert "authorById(id: ID!): Author" in result.output
    assert "Resolved by author-service." in result.output


def test_compose_writes_the_output_file(runner: CliRunner, tmp_path: Path) -> None:
    out = tmp_path / "composed.graphql"
    result = runner.invoke(cli, ["compose", "-o", str(out)])
    assert result.exit_code == 0, result.output
    assert "type Book" in out.read_text(encoding="utf-8")
    assert "Composed schema written to" in result.output


def test_plan_lists_field_owners(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["plan"])
    assert result.exit_code == 0, result.output
    assert "Query.bookById: book-service" in result.output
    assert "Author.fullName: author-service" in result.output


def test_plan_lists_lookups_of_merged_types(runner: CliRunner, merged_config: Path) -> None:
    result = runner.invoke(cli, ["plan", "--config", str(merged_config)])
    assert result.exit_code == 0, result.output
    assert "Book.rating: review-service" in result.output
    assert "Book@review-service: reviewsForBook(id: Book.id)" in result.output


def test_composition_errors_exit_with_status_1(runner: CliRunner, tmp_path: Path) -> None:
    (tmp_path / "shelf.graphql").write_text("type Query { bookById(id: ID!): String }", encoding="utf-8")
    config = tmp_path / "gateway.yaml"
    config.write_text(
        "services:\n"
        "  - name: book-service\n"
        "  - {name: shelf-service, url: 'http://localhost:4020/graphql', schemaPath: shelf.graphql}\n",
        encoding="utf-8",
    )

    result = runner.invoke(cli, ["compose", "--config", str(config)])

    assert result.exit_code == 1
    assert "Composition failed" in result.output
    assert "Declare a merge key" in result.output


def test_invalid_configuration_exits_with_status_1(runner: CliRunner, tmp_path: Path) -> None:
    config = tmp_path / "gateway.yaml"
    config.write_text("services: [{name: nowhere}]", encoding="utf-8")

    result = runner.invoke(cli, ["plan", "--config", str(config)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_serve_runs_the_gateway(runner: CliRunner, uvicorn_calls: list[dict[str, Any]]) -> None:
    result = runner.invoke(cli, ["serve", "--port", "5000"])

    assert result.exit_code == 0, result.output
    (call,) = uvicorn_calls
    assert isinstance(call["app"], Starlette)
    assert (call["host"], call["port"]) == ("127.0.0.1", 5000)


def test_serve_uses_the_configured_address(
    runner: CliRunner, uvicorn_calls: list[dict[str, Any]], merged_config: Path
) -> None:
    merged_config.write_text(merged_config.read_text(encoding="utf-8") + "host: 0.0.0.0\nport: 9000\n")

    result = runner.invoke(cli, ["serve", "--config", str(merged_config)])

    assert result.exit_code == 0, result.output
    assert (uvicorn_calls[0]["host"], uvicorn_calls[0]["port"]) == ("0.0.0.0", 9000)


def test_service_runs_a_bundled_backend(runner: CliRunner, uvicorn_calls: list[dict[str, Any]]) -> None:
    result = runner.invoke(cli, ["service", "author-service"])

    assert result.exit_code == 0, result.output
    (call,) = uvicorn_calls
    assert call["port"] == 4002
    assert "author-service ready" in result.output


def test_service_rejects_unknown_names(runner: CliRunner, uvicorn_calls: list[dict[str, Any]]) -> None:
    result = runner.invoke(cli, ["service", "shelf-service"])
    assert result.exit_code == 2
    assert uvicorn_calls == []


@pytest.mark.usefixtures("restore_log_handlers")
def test_log_file_receives_debug_output(runner: CliRunner, tmp_path: Path) -> None:
    log_file = tmp_path / "graphgate.log"
    result = runner.invoke(cli, ["--log-level", "debug", "--log-file", str(log_file), "compose"])

    assert result.exit_code == 0, result.output
    assert "INFO:Composed 2 subschema(s) into" in log_file.read_text(encoding="utf-8")
