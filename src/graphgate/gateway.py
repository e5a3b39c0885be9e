from collections.abc import Mapping
from typing import Any

from graphql import (
    DocumentNode,
    ExecutionResult,
    FieldNode,
    FragmentDefinitionNode,
    GraphQLError,
    GraphQLSchema,
    OperationType,
    execute_sync,
    get_operation_ast,
    parse,
    validate,
)
from graphql.execution.values import get_variable_values

from graphgate import log
from graphgate.composer import ComposedSchema
from graphgate.delegation import Delegator, OperationContext
from graphgate.selection import build_document, collect_fields, response_key, variables_in


class Gateway:
    """Execute queries against a composed schema by delegating to its subschemas.

    The gateway holds no per-request state; one instance serves concurrent
    requests.
    """

    def __init__(self, composed: ComposedSchema) -> None:
        self.composed = composed
        self.delegator = Delegator(composed)

    @property
    def schema(self) -> GraphQLSchema:
        return self.composed.schema

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> ExecutionResult:
        try:
            document = parse(query)
        except GraphQLError as e:
            return ExecutionResult(data=None, errors=[e])
        return await self.execute_document(document, variables, operation_name)

    async def execute_document(
        self,
        document: DocumentNode,
        variables: Mapping[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> ExecutionResult:
        validation_errors = validate(self.composed.schema, document)
        if validation_errors:
            return ExecutionResult(data=None, errors=validation_errors)

        operation = get_operation_ast(document, operation_name)
        if operation is None:
            message = (
                f"Unknown operation named '{operation_name}'."
                if operation_name
                else "Must provide operation name if query contains multiple operations."
            )
            return ExecutionResult(data=None, errors=[GraphQLError(message)])
        if operation.operation is OperationType.SUBSCRIPTION:
            return ExecutionResult(
                data=None, errors=[GraphQLError("Subscriptions are not supported by the gateway.", operation)]
            )
        root_type = self.composed.type_graph.root_type_name(operation.operation)
        if root_type is None:
            message = f"Schema is not configured to execute {operation.operation.value} operation."
            return ExecutionResult(data=None, errors=[GraphQLError(message, operation)])

        raw_variables = dict(variables or {})
        coerced = get_variable_values(self.composed.schema, operation.variable_definitions or (), raw_variables)
        if isinstance(coerced, list):
            return ExecutionResult(data=None, errors=coerced)

        fragments = {
            definition.name.value: definition
            for definition in document.definitions
            if isinstance(definition, FragmentDefinitionNode)
        }
        nodes = collect_fields(operation.selection_set, fragments, coerced)
        local = [node for node in nodes if node.name.value.startswith("__")]
        delegated = [node for node in nodes if not node.name.value.startswith("__")]

        context = OperationContext(
            operation_type=operation.operation,
            variable_definitions={
                definition.variable.name.value: definition for definition in operation.variable_definitions or ()
            },
            variables=raw_variables,
            operation_name=operation.name.value if operation.name else None,
        )
        log.debug(f"Executing {operation.operation.value} with {len(delegated)} delegated root field(s)")

        data: dict[str, Any] = {}
        errors: list[GraphQLError] = []
        if delegated:
            data, errors = await self.delegator.delegate(delegated, context)
        if local:
            local_data, local_errors = self._resolve_locally(local, context)
            data.update(local_data)
            errors.extend(local_errors)

        completed = self.delegator.complete(data, root_type, nodes, errors)
        return ExecutionResult(data=completed, errors=errors or None)

    def _resolve_locally(
        self, nodes: list[FieldNode], context: OperationContext
    ) -> tuple[dict[str, Any], list[GraphQLError]]:
        """Resolve introspection root fields against the composed schema."""
        used = [name for name in variables_in(nodes) if name in context.variable_definitions]
        document = build_document(
            context.operation_type,
            nodes,
            [context.variable_definitions[name] for name in used],
        )
        result = execute_sync(self.composed.schema, document, variable_values=dict(context.variables))
        data = result.data or {key: None for key in map(response_key, nodes)}
        return data, list(result.errors or [])

    async def aclose(self) -> None:
        for subschema in self.composed.subschemas.values():
            aclose = getattr(subschema.executor, "aclose", None)
            if aclose is not None:
                await aclose()
