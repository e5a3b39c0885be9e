"""ASGI applications for the gateway and the bundled backend services."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ariadne.asgi import GraphQL
from ariadne.explorer import ExplorerGraphiQL
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response
from starlette.routing import Route

from graphgate import log
from graphgate.gateway import Gateway
from graphgate.services import ServiceDescriptor

GRAPHQL_PATH = "/graphql"

DEFAULT_GATEWAY_QUERY = """query bookById {
  bookById(id: 1) {
    id
    title
  }
}
"""


class GraphQLRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(None, alias="operationName")


def _transport_error(message: str) -> JSONResponse:
    return JSONResponse({"errors": [{"message": message}]}, status_code=400)


def create_gateway_app(gateway: Gateway, debug: bool = False) -> Starlette:
    """Serve a gateway at ``/graphql``: POST executes, GET opens the GraphiQL explorer."""
    explorer = ExplorerGraphiQL(title="graphgate", default_query=DEFAULT_GATEWAY_QUERY)

    async def graphql_endpoint(request: Request) -> Response:
        if request.method == "GET":
            return HTMLResponse(explorer.html(request))

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _transport_error("Request body is not valid JSON.")
        try:
            graphql_request = GraphQLRequest.model_validate(body)
        except ValidationError as e:
            return _transport_error(f"Request body is not a valid GraphQL request: {e.errors()[0]['msg']}")

        result = await gateway.execute(
            graphql_request.query,
            variables=graphql_request.variables,
            operation_name=graphql_request.operation_name,
        )
        payload = result.formatted
        if result.data is None and result.errors:
            payload.pop("data", None)
            return JSONResponse(payload, status_code=400)
        return JSONResponse(payload)

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        log.info(f"Gateway serving {len(gateway.composed.subschemas)} subschema(s)")
        try:
            yield
        finally:
            await gateway.aclose()

    return Starlette(
        debug=debug,
        routes=[Route(GRAPHQL_PATH, graphql_endpoint, methods=["GET", "POST"])],
        lifespan=lifespan,
    )


def create_service_app(service: ServiceDescriptor, debug: bool = False) -> Starlette:
    """Serve one backend service at ``/graphql`` with ariadne."""
    default_query = f"query {{\n  {service.root_field}(id: 1) {{\n    id\n  }}\n}}\n"
    graphql_app = GraphQL(
        service.executable_schema(),
        debug=debug,
        explorer=ExplorerGraphiQL(title=service.name, default_query=default_query),
    )
    return Starlette(debug=debug, routes=[Route(GRAPHQL_PATH, graphql_app, methods=["GET", "POST"])])
