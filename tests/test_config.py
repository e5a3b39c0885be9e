from pathlib import Path

import pytest

from graphgate.config import (
    DEFAULT_PORT,
    GatewayConfig,
    ServiceConfig,
    build_gateway,
    build_subschema,
    load_config,
)
from graphgate.errors import CompositionError, ConfigError
from graphgate.executors import HttpExecutor, LocalExecutor
from graphgate.transforms import ProvenanceTransform
from tests.conftest import REVIEWS_TYPE_DEFS


@pytest.fixture
def reviews_schema_file(tmp_path: Path) -> Path:
    schema_dir = tmp_path / "schemas"
    schema_dir.mkdir()
    path = schema_dir / "reviews.graphql"
    path.write_text(REVIEWS_TYPE_DEFS, encoding="utf-8")
    return path


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "gateway.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def test_default_config_reproduces_book_and_author_services() -> None:
    config = load_config()
    assert config.port == DEFAULT_PORT
    assert [service.name for service in config.services] == ["book-service", "author-service"]


def test_default_gateway_uses_http_executors() -> None:
    gateway = build_gateway(GatewayConfig())
    executors = {name: subschema.executor for name, subschema in gateway.composed.subschemas.items()}

    assert isinstance(executors["book-service"], HttpExecutor)
    assert executors["book-service"].url == "http://localhost:4001/graphql"
    assert isinstance(executors["author-service"], HttpExecutor)
    assert executors["author-service"].url == "http://localhost:4002/graphql"
    assert gateway.composed.field("Book", "title").description == "The title of the book\nResolved by book-service."


def test_load_config_from_yaml(tmp_path: Path, reviews_schema_file: Path) -> None:
    path = write_config(
        tmp_path,
        """
host: 0.0.0.0
port: 8080
services:
  - name: book-service
    local: true
    merge:
      Book:
        fieldName: bookById
  - name: review-service
    url: http://reviews:4010/graphql
    schemaPath: schemas/reviews.graphql
    timeout: 2.5
    provenance: false
    merge:
      Book:
        key: id
        fieldName: reviewsForBook
""",
    )

    config = load_config(path)

    assert (config.host, config.port) == ("0.0.0.0", 8080)
    books, reviews = config.services
    assert books.local is True
    assert books.merge["Book"].field_name == "bookById"
    assert reviews.schema_path == reviews_schema_file
    assert reviews.timeout == 2.5

    gateway = build_gateway(config)
    assert isinstance(gateway.composed.subschemas["book-service"].executor, LocalExecutor)
    assert gateway.composed.subschemas["review-service"].transforms == ()
    assert gateway.composed.subschemas["review-service"].timeout == 2.5
    assert gateway.composed.plan.owner("Book", "rating") == "review-service"


def test_local_service_runs_in_process(tmp_path: Path) -> None:
    path = write_config(tmp_path, "services:\n  - name: publisher-service\n    local: true\n")
    gateway = build_gateway(load_config(path))
    subschema = gateway.composed.subschemas["publisher-service"]
    assert isinstance(subschema.executor, LocalExecutor)
    assert isinstance(subschema.transforms[0], ProvenanceTransform)


@pytest.mark.parametrize(
    "content, message",
    [
        ("services: [{name: shelf-service, url: 'http://shelf'}]", "needs a 'schemaPath'"),
        ("services: [{name: shelf-service, schemaPath: shelf.graphql}]", "needs a 'url'"),
        ("services: [{name: shelf-service, local: true, schemaPath: shelf.graphql}]", "requires a bundled service"),
        ("services: [{name: book-service, colour: blue}]", "colour"),
        ("port: [", "Invalid gateway configuration"),
    ],
)
def test_invalid_config_files(tmp_path: Path, content: str, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(tmp_path, content))


def test_missing_schema_file_is_a_config_error(tmp_path: Path) -> None:
    service = ServiceConfig(name="shelf-service", url="http://shelf/graphql", schemaPath=tmp_path / "missing.graphql")
    with pytest.raises(ConfigError, match="Cannot load schema of 'shelf-service'"):
        build_subschema(service)


def test_unsupported_schema_file_is_a_config_error(tmp_path: Path) -> None:
    path = tmp_path / "shelf.graphql"
    path.write_text("type Query { shelf: Shelf } union Shelf = Query", encoding="utf-8")
    service = ServiceConfig(name="shelf-service", url="http://shelf/graphql", schemaPath=path)
    with pytest.raises(ConfigError, match="unsupported kind"):
        build_subschema(service)


def test_colliding_services_fail_composition(tmp_path: Path) -> None:
    path = tmp_path / "shelf.graphql"
    path.write_text("type Query { bookById(id: ID!): String }", encoding="utf-8")
    config = GatewayConfig(
        services=[
            ServiceConfig(name="book-service"),
            ServiceConfig(name="shelf-service", url="http://shelf/graphql", schemaPath=path),
        ]
    )
    with pytest.raises(CompositionError, match="ownership is ambiguous"):
        build_gateway(config)
