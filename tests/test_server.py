import pytest
from starlette.testclient import TestClient

from graphgate.gateway import Gateway
from graphgate.server import GRAPHQL_PATH, create_gateway_app, create_service_app
from graphgate.services import ServiceDescriptor


@pytest.fixture
def client(gateway: Gateway) -> TestClient:
    return TestClient(create_gateway_app(gateway))


def test_post_query(client: TestClient) -> None:
    response = client.post(GRAPHQL_PATH, json={"query": '{ bookById(id: "1") { id title } }'})
    assert response.status_code == 200
    assert response.json() == {"data": {"bookById": {"id": "1", "title": "Book 1"}}}


def test_post_query_with_variables_and_operation_name(client: TestClient) -> None:
    response = client.post(
        GRAPHQL_PATH,
        json={
            "query": "query A { bookById(id: 1) { title } } query B($id: ID!) { authorById(id: $id) { fullName } }",
            "variables": {"id": "2"},
            "operationName": "B",
        },
    )
    assert response.status_code == 200
    assert response.json() == {"data": {"authorById": {"fullName": "J Dough"}}}


def test_partial_results_are_returned_with_errors(client: TestClient) -> None:
    response = client.post(GRAPHQL_PATH, json={"query": '{ bookById(id: "99") { id } }'})
    assert response.status_code == 200
    assert response.json() == {
        "data": {"bookById": None},
        "errors": [{"message": "Record not found", "path": ["bookById"], "extensions": {"code": "NOT_FOUND"}}],
    }


def test_validation_errors_omit_data(client: TestClient) -> None:
    response = client.post(GRAPHQL_PATH, json={"query": "{ bookById(id: 1) { isbn } }"})
    assert response.status_code == 400
    body = response.json()
    assert "data" not in body
    assert body["errors"][0]["message"] == "Cannot query field 'isbn' on type 'Book'."


@pytest.mark.parametrize(
    "content, message",
    [
        ("{not json", "Request body is not valid JSON."),
        ('{"variables": {}}', "Request body is not a valid GraphQL request"),
        ('{"query": 42}', "Request body is not a valid GraphQL request"),
        ('["query"]', "Request body is not a valid GraphQL request"),
    ],
)
def test_malformed_requests_are_rejected(client: TestClient, content: str, message: str) -> None:
    response = client.post(GRAPHQL_PATH, content=content, headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["errors"][0]["message"].startswith(message)


def test_get_serves_the_explorer(client: TestClient) -> None:
    response = client.get(GRAPHQL_PATH)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "graphgate" in response.text


def test_other_methods_are_not_allowed(client: TestClient) -> None:
    assert client.put(GRAPHQL_PATH, json={}).status_code == 405


def test_lifespan_closes_the_gateway(gateway: Gateway, monkeypatch: pytest.MonkeyPatch) -> None:
    closed: list[bool] = []

    async def aclose() -> None:
        closed.append(True)

    monkeypatch.setattr(gateway, "aclose", aclose)
    with TestClient(create_gateway_app(gateway)) as client:
        assert client.post(GRAPHQL_PATH, json={"query": "{ __typename }"}).json() == {"data": {"__typename": "Query"}}
        assert closed == []
    assert closed == [True]


def test_service_app_serves_its_records(books: ServiceDescriptor) -> None:
    client = TestClient(create_service_app(books))
    response = client.post(GRAPHQL_PATH, json={"query": "{ bookById(id: 2) { title } }"})
    assert response.status_code == 200
    assert response.json() == {"data": {"bookById": {"title": "Book 2"}}}
