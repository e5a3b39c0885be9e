"""Executors turn an :class:`ExecutionRequest` into a call against one backend.

Executors never raise across their contract: transport problems are returned as
an ``ExecutionResult`` whose errors carry the ``SERVICE_UNAVAILABLE`` code, and
backend errors (for example ``NOT_FOUND``) are passed through untouched.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from graphql import DocumentNode, ExecutionResult, GraphQLSchema, OperationType, graphql, print_ast

from graphgate import log
from graphgate.errors import error_from_payload, service_unavailable

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class ExecutionRequest:
    document: DocumentNode
    variables: dict[str, Any] = field(default_factory=dict)
    operation_type: OperationType = OperationType.QUERY
    operation_name: str | None = None

    @property
    def query(self) -> str:
        return print_ast(self.document)

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": self.query, "variables": self.variables}
        if self.operation_name:
            payload["operationName"] = self.operation_name
        return payload


class Executor(Protocol):
    async def __call__(self, request: ExecutionRequest) -> ExecutionResult: ...


def parse_response_payload(payload: Any) -> ExecutionResult | None:
    """Convert a GraphQL response body into an ExecutionResult.

    Returns None when the payload is not shaped like a GraphQL response.
    """
    if not isinstance(payload, dict) or not ("data" in payload or "errors" in payload):
        return None

    data = payload.get("data")
    errors = payload.get("errors")
    if data is not None and not isinstance(data, dict):
        return None
    if errors is not None and not isinstance(errors, list):
        return None

    return ExecutionResult(
        data=data,
        errors=[error_from_payload(entry) for entry in errors] if errors else None,
    )


class HttpExecutor:
    """Send requests to a backend GraphQL endpoint over HTTP."""

    def __init__(
        self,
        service_name: str,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.service_name = service_name
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __call__(self, request: ExecutionRequest) -> ExecutionResult:
        log.debug(f"{self.service_name} executor sending: {request.query} variables={request.variables}")
        try:
            response = await self._client.post(self.url, json=request.as_payload())
        except httpx.HTTPError as e:
            log.warning(f"{self.service_name} is unreachable at {self.url}: {e!r}")
            return ExecutionResult(
                data=None, errors=[service_unavailable(f"Service '{self.service_name}' is unavailable")]
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None

        result = parse_response_payload(payload)
        if result is None:
            log.warning(f"{self.service_name} responded with HTTP {response.status_code} and no GraphQL body")
            return ExecutionResult(
                data=None,
                errors=[
                    service_unavailable(
                        f"Service '{self.service_name}' returned an invalid response (HTTP {response.status_code})"
                    )
                ],
            )
        return result

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"HttpExecutor({self.service_name!r}, {self.url!r})"


class LocalExecutor:
    """Execute requests against a co-located executable schema.

    The result goes through the same serialisation as an HTTP response, so a
    local executor behaves exactly like an :class:`HttpExecutor` pointed at the
    same service.
    """

    def __init__(self, service_name: str, schema: GraphQLSchema) -> None:
        self.service_name = service_name
        self.schema = schema

    async def __call__(self, request: ExecutionRequest) -> ExecutionResult:
        log.debug(f"{self.service_name} executor running: {request.query} variables={request.variables}")
        result = await graphql(
            self.schema,
            request.query,
            variable_values=request.variables,
            operation_name=request.operation_name,
        )
        payload = json.loads(json.dumps(result.formatted))
        parsed = parse_response_payload(payload)
        if parsed is None:
            return ExecutionResult(
                data=None,
                errors=[service_unavailable(f"Service '{self.service_name}' returned an invalid response")],
            )
        return parsed

    def __repr__(self) -> str:
        return f"LocalExecutor({self.service_name!r})"
