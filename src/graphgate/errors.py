from collections.abc import Sequence
from enum import Enum
from typing import Any

from graphql import GraphQLError


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class GraphGateError(Exception):
    """Base class for errors raised by graphgate."""


class TypeGraphError(GraphGateError, ValueError):
    """Raised when a type graph is malformed or uses an unsupported type kind."""


class CompositionError(GraphGateError):
    """Raised when subschemas cannot be composed into one schema.

    Composition errors are detected once at startup and are fatal: a gateway
    must not serve traffic from a schema that failed to compose.
    """


class ConfigError(GraphGateError):
    """Raised when the gateway configuration cannot be loaded."""


def service_unavailable(message: str, path: Sequence[str | int] | None = None) -> GraphQLError:
    return GraphQLError(
        message,
        path=list(path) if path is not None else None,
        extensions={"code": ErrorCode.SERVICE_UNAVAILABLE.value},
    )


def not_found(message: str, path: Sequence[str | int]) -> GraphQLError:
    return GraphQLError(message, path=list(path), extensions={"code": ErrorCode.NOT_FOUND.value})


def error_from_payload(payload: Any) -> GraphQLError:
    """Build a GraphQLError from a formatted error entry of a GraphQL response.

    Locations refer to the document sent to the backend, so they are dropped.
    """
    if not isinstance(payload, dict):
        return GraphQLError(str(payload))

    message = payload.get("message")
    path = payload.get("path")
    extensions = payload.get("extensions")
    return GraphQLError(
        message if isinstance(message, str) else "Unknown error",
        path=list(path) if isinstance(path, list) else None,
        extensions=extensions if isinstance(extensions, dict) else None,
    )


def relocate_error(error: GraphQLError, path: Sequence[str | int]) -> GraphQLError:
    """Return a copy of a backend error attached to a gateway response path."""
    return GraphQLError(
        error.message,
        path=list(path),
        original_error=error.original_error,
        extensions=error.extensions,
    )
