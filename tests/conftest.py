import asyncio
from collections.abc import Mapping
from typing import Any

import pytest
from ariadne import QueryType, gql, make_executable_schema
from graphql import ExecutionResult, GraphQLSchema

from graphgate.composer import ComposedSchema, MergedTypeConfig, Subschema, compose_schemas
from graphgate.executors import ExecutionRequest, Executor, LocalExecutor
from graphgate.gateway import Gateway
from graphgate.services import ServiceDescriptor, author_service, book_service
from graphgate.transforms import ProvenanceTransform
from graphgate.typegraph import TypeGraph


REVIEWS_TYPE_DEFS = gql(
    """
    type Book {
      id: ID!
      rating: Float!
      reviews: [Review!]!
    }

    type Review {
      body: String!
      stars: Int!
    }

    type Query {
      reviewsForBook(id: ID!): Book
    }
    """
)

REVIEWS = {
    "1": {"rating": 4.5, "reviews": [{"body": "Loved it", "stars": 5}, {"body": "Fine", "stars": 4}]},
    "2": {"rating": None, "reviews": []},
    "3": {"rating": 3.0, "reviews": [{"body": "Meh", "stars": 3}]},
    "4": {"rating": 1.0, "reviews": []},
}


class RecordingExecutor:
    """Wrap an executor to keep every request it receives.

    ``delay`` holds the response back; ``events`` (shared between executors)
    records when each request starts and finishes.
    """

    def __init__(
        self,
        name: str,
        executor: Executor,
        delay: float = 0.0,
        events: list[tuple[str, str]] | None = None,
    ) -> None:
        self.name = name
        self.executor = executor
        self.delay = delay
        self.events = events if events is not None else []
        self.requests: list[ExecutionRequest] = []

    async def __call__(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        self.events.append(("start", self.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        result = await self.executor(request)
        self.events.append(("end", self.name))
        return result

    @property
    def queries(self) -> list[str]:
        return [request.query for request in self.requests]


def reviews_schema() -> GraphQLSchema:
    query = QueryType()

    @query.field("reviewsForBook")
    def resolve_reviews_for_book(*_: Any, id: str) -> dict[str, Any] | None:
        record = REVIEWS.get(id)
        return {"id": id, **record} if record is not None else None

    return make_executable_schema(REVIEWS_TYPE_DEFS, query)


def local_executor(descriptor: ServiceDescriptor, delay: float = 0.0, events: list | None = None) -> RecordingExecutor:
    return RecordingExecutor(
        descriptor.name, LocalExecutor(descriptor.name, descriptor.executable_schema()), delay, events
    )


def subschema_for(
    descriptor: ServiceDescriptor,
    executor: Executor | None = None,
    provenance: bool = True,
    merge: Mapping[str, MergedTypeConfig] | None = None,
    timeout: float | None = None,
) -> Subschema:
    return Subschema(
        name=descriptor.name,
        type_graph=descriptor.type_graph(),
        executor=executor or local_executor(descriptor),
        transforms=(ProvenanceTransform(descriptor.name),) if provenance else (),
        merge=merge or {},
        timeout=timeout,
    )


def reviews_subschema(executor: Executor | None = None) -> Subschema:
    return Subschema(
        name="review-service",
        type_graph=TypeGraph.from_sdl(REVIEWS_TYPE_DEFS),
        executor=executor or RecordingExecutor("review-service", LocalExecutor("review-service", reviews_schema())),
        transforms=(ProvenanceTransform("review-service"),),
        merge={"Book": MergedTypeConfig(key="id", field_name="reviewsForBook")},
    )


@pytest.fixture
def books() -> ServiceDescriptor:
    return book_service()


@pytest.fixture
def authors() -> ServiceDescriptor:
    return author_service()


@pytest.fixture
def book_executor(books: ServiceDescriptor) -> RecordingExecutor:
    return local_executor(books)


@pytest.fixture
def author_executor(authors: ServiceDescriptor) -> RecordingExecutor:
    return local_executor(authors)


@pytest.fixture
def composed(
    books: ServiceDescriptor,
    authors: ServiceDescriptor,
    book_executor: RecordingExecutor,
    author_executor: RecordingExecutor,
) -> ComposedSchema:
    return compose_schemas([subschema_for(books, book_executor), subschema_for(authors, author_executor)])


@pytest.fixture
def gateway(composed: ComposedSchema) -> Gateway:
    return Gateway(composed)


@pytest.fixture
def review_executor() -> RecordingExecutor:
    return RecordingExecutor("review-service", LocalExecutor("review-service", reviews_schema()))


@pytest.fixture
def merged_gateway(
    books: ServiceDescriptor, book_executor: RecordingExecutor, review_executor: RecordingExecutor
) -> Gateway:
    """Book type served by both book-service (title) and review-service (rating, reviews)."""
    return Gateway(
        compose_schemas(
            [
                subschema_for(books, book_executor, merge={"Book": MergedTypeConfig(key="id", field_name="bookById")}),
                reviews_subschema(review_executor),
            ]
        )
    )
