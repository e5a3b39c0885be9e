"""Bundled toy backends, each owning one slice of the book catalogue graph."""

from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from graphgate.services.descriptor import RECORD_NOT_FOUND_MESSAGE, ServiceDescriptor
from graphgate.services.store import NOT_FOUND, NotFound, RecordStore

SCHEMAS_DIR = Path(__file__).parent / "schemas"

BOOKS = (
    {"id": "1", "title": "Book 1"},
    {"id": "2", "title": "Book 2"},
    {"id": "3", "title": "Book 3"},
    {"id": "4", "title": "Book 4"},
)

AUTHORS = (
    {"id": "1", "fullName": "J Doe"},
    {"id": "2", "fullName": "J Dough"},
)

PUBLISHERS = (
    {"id": "1", "name": "Green Book"},
    {"id": "2", "name": "Yellow Book"},
    {"id": "3", "name": "Red Book"},
)


def book_service(records: Iterable[Mapping[str, Any]] = BOOKS) -> ServiceDescriptor:
    return ServiceDescriptor("book-service", SCHEMAS_DIR / "books.graphql", "bookById", RecordStore(records), 4001)


def author_service(records: Iterable[Mapping[str, Any]] = AUTHORS) -> ServiceDescriptor:
    return ServiceDescriptor(
        "author-service", SCHEMAS_DIR / "authors.graphql", "authorById", RecordStore(records), 4002
    )


def publisher_service(records: Iterable[Mapping[str, Any]] = PUBLISHERS) -> ServiceDescriptor:
    return ServiceDescriptor(
        "publisher-service", SCHEMAS_DIR / "publishers.graphql", "publisherById", RecordStore(records), 4003
    )


SERVICES: dict[str, Callable[[], ServiceDescriptor]] = {
    "book-service": book_service,
    "author-service": author_service,
    "publisher-service": publisher_service,
}


def get_service(name: str) -> ServiceDescriptor:
    """Build a fresh descriptor for a bundled service.

    Raises:
        KeyError: If no bundled service has that name
    """
    try:
        factory = SERVICES[name]
    except KeyError:
        raise KeyError(f"Unknown service '{name}'. Available services: {', '.join(SERVICES)}") from None
    return factory()


__all__ = [
    "NOT_FOUND",
    "RECORD_NOT_FOUND_MESSAGE",
    "SERVICES",
    "NotFound",
    "RecordStore",
    "ServiceDescriptor",
    "author_service",
    "book_service",
    "get_service",
    "publisher_service",
]
