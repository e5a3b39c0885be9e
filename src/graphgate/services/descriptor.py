from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ariadne import QueryType, load_schema_from_path, make_executable_schema
from graphql import GraphQLError, GraphQLResolveInfo, GraphQLSchema

from graphgate.errors import ErrorCode
from graphgate.services.store import NOT_FOUND, NotFound, RecordStore
from graphgate.typegraph import TypeGraph

RECORD_NOT_FOUND_MESSAGE = "Record not found"


class ServiceDescriptor:
    """A backend service: its type definitions plus the resolvers over its own store.

    The only resolver a bundled service needs is a lookup-by-id root field;
    object fields resolve straight from the stored records.
    """

    def __init__(
        self,
        name: str,
        schema_path: Path,
        root_field: str,
        store: RecordStore,
        port: int,
    ) -> None:
        self.name = name
        self.schema_path = schema_path
        self.root_field = root_field
        self.store = store
        self.port = port
        self.type_defs = load_schema_from_path(schema_path)

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}/graphql"

    def type_graph(self) -> TypeGraph:
        return TypeGraph.from_sdl(self.type_defs)

    def resolve(
        self,
        type_name: str,
        field_name: str,
        args: Mapping[str, Any],
        parent: Mapping[str, Any] | None = None,
    ) -> Any | NotFound:
        """Resolve a field of this service without going through GraphQL.

        Args:
            type_name: Name of the type owning the field
            field_name: Name of the field
            args: Field arguments
            parent: Record the field is read from, for non-root fields

        Returns:
            The resolved value, or NOT_FOUND when no record matches

        Raises:
            KeyError: If the service has no resolver for the given field
        """
        if type_name == "Query":
            if field_name != self.root_field:
                raise KeyError(f"{self.name} has no resolver for {type_name}.{field_name}")
            return self.store.find(args[self.store.key])

        if parent is None:
            raise KeyError(f"{self.name} cannot resolve {type_name}.{field_name} without a parent record")
        return parent.get(field_name, NOT_FOUND)

    def executable_schema(self) -> GraphQLSchema:
        query = QueryType()

        @query.field(self.root_field)
        def resolve_root_field(_obj: Any, _info: GraphQLResolveInfo, **kwargs: Any) -> Any:
            record = self.resolve("Query", self.root_field, kwargs)
            if record is NOT_FOUND:
                raise GraphQLError(RECORD_NOT_FOUND_MESSAGE, extensions={"code": ErrorCode.NOT_FOUND.value})
            return record

        return make_executable_schema(self.type_defs, query)

    def __repr__(self) -> str:
        return f"ServiceDescriptor({self.name!r}, port={self.port})"
