"""Field delegation: split a query by owning subschema, dispatch, merge results.

Root fields are grouped by the subschema that owns them, giving one request per
subschema. Within a request, fields of a merged type that belong to another
subschema are cut out and fetched afterwards through that subschema's lookup
field, using the object's key (requested under a hidden alias). Lookups found
at the same depth are batched into one request per target subschema.

Results are merged into plain dicts and then completed against the original
selection, so the response shape never depends on which backend answered first.
"""

import asyncio
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from graphql import (
    ArgumentNode,
    ExecutionResult,
    FieldNode,
    GraphQLError,
    GraphQLObjectType,
    GraphQLOutputType,
    NameNode,
    OperationType,
    VariableDefinitionNode,
    ast_from_value,
    is_list_type,
    is_non_null_type,
    is_object_type,
)

from graphgate import log
from graphgate.composer import ComposedSchema
from graphgate.errors import not_found, relocate_error, service_unavailable
from graphgate.executors import ExecutionRequest
from graphgate.selection import build_document, make_field, response_key, variables_in, with_selections

KEY_ALIAS_PREFIX = "_gw_key_"
LOOKUP_ALIAS_PREFIX = "_gw_lookup_"

ResponsePath = tuple[str | int, ...]


@dataclass(frozen=True)
class Lookup:
    """Fields of a merged type to fetch from another subschema.

    ``path`` is made of response keys, relative to the data returned by the
    request that scheduled the lookup.
    """

    path: tuple[str, ...]
    type_name: str
    target: str
    selections: tuple[FieldNode, ...]


@dataclass(frozen=True)
class DelegationStep:
    subschema: str
    selections: tuple[FieldNode, ...]
    lookups: tuple[Lookup, ...] = ()

    @property
    def response_keys(self) -> list[str]:
        return [
            response_key(node) for node in self.selections if not response_key(node).startswith(KEY_ALIAS_PREFIX)
        ]


@dataclass(frozen=True)
class OperationContext:
    operation_type: OperationType
    variable_definitions: Mapping[str, VariableDefinitionNode] = field(default_factory=dict)
    variables: Mapping[str, Any] = field(default_factory=dict)
    operation_name: str | None = None


@dataclass
class _LookupTarget:
    obj: dict[str, Any]
    path: ResponsePath
    lookup: Lookup


_Pending = tuple[dict[str, Any], Sequence[Lookup], ResponsePath]


class _NullBubble(Exception):
    """A non-null field completed to null."""


class QueryPlanner:
    def __init__(self, composed: ComposedSchema) -> None:
        self.composed = composed
        self.plan = composed.plan

    def plan_root(self, root_type: str, nodes: Sequence[FieldNode]) -> list[DelegationStep]:
        """One step per subschema owning root fields, in order of first appearance."""
        grouped: dict[str, list[FieldNode]] = {}
        for node in nodes:
            grouped.setdefault(self.plan.owner(root_type, node.name.value), []).append(node)
        return [self.split(root_type, group, subschema) for subschema, group in grouped.items()]

    def split(
        self,
        type_name: str,
        nodes: Sequence[FieldNode],
        subschema: str,
        path: tuple[str, ...] = (),
    ) -> DelegationStep:
        """Keep the fields ``subschema`` can resolve and schedule lookups for the rest."""
        forwarded: list[FieldNode] = []
        lookups: list[Lookup] = []
        foreign: dict[str, list[FieldNode]] = {}

        for node in nodes:
            field_name = node.name.value
            if field_name == "__typename":
                forwarded.append(node)
                continue

            owner = self.plan.owner_for(type_name, field_name, subschema)
            if owner != subschema:
                foreign.setdefault(owner, []).append(node)
                continue

            if node.selection_set is not None:
                child_type = self.composed.field(type_name, field_name).named_type
                child = self.split(
                    child_type,
                    [selection for selection in node.selection_set.selections if isinstance(selection, FieldNode)],
                    subschema,
                    (*path, response_key(node)),
                )
                node = with_selections(node, child.selections)
                lookups.extend(child.lookups)
            forwarded.append(node)

        if foreign:
            key = self.plan.keys[type_name]
            forwarded.append(make_field(key, alias=KEY_ALIAS_PREFIX + key))
            lookups.extend(
                Lookup(path, type_name, target, tuple(target_nodes)) for target, target_nodes in foreign.items()
            )

        return DelegationStep(subschema, tuple(forwarded), tuple(lookups))


def _walk(value: Any, path: Sequence[str], concrete: ResponsePath) -> Iterator[tuple[dict[str, Any], ResponsePath]]:
    if value is None:
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            yield from _walk(item, path, (*concrete, index))
        return
    if not isinstance(value, dict):
        return
    if not path:
        yield value, concrete
        return
    head, *rest = path
    yield from _walk(value.get(head), rest, (*concrete, head))


def _locate_failure(errors: Sequence[GraphQLError], paths: Sequence[ResponsePath]) -> list[GraphQLError]:
    """Attach errors of a failed request to every field path it was responsible for."""
    located = [error for error in errors if error.path]
    unlocated = [error for error in errors if not error.path]
    return located + [relocate_error(error, path) for path in paths for error in unlocated]


class Delegator:
    def __init__(self, composed: ComposedSchema) -> None:
        self.composed = composed
        self.planner = QueryPlanner(composed)

    async def dispatch(self, subschema_name: str, request: ExecutionRequest) -> ExecutionResult:
        subschema = self.composed.subschemas[subschema_name]
        if subschema.timeout is None:
            return await subschema.executor(request)
        try:
            return await asyncio.wait_for(subschema.executor(request), subschema.timeout)
        except TimeoutError:
            log.warning(f"{subschema_name} did not respond within {subschema.timeout}s")
            return ExecutionResult(
                data=None,
                errors=[service_unavailable(f"Service '{subschema_name}' did not respond in time")],
            )

    def _request(
        self,
        operation: OperationType,
        selections: Sequence[FieldNode],
        context: OperationContext,
        operation_name: str | None = None,
    ) -> ExecutionRequest:
        used = [name for name in variables_in(selections) if name in context.variable_definitions]
        return ExecutionRequest(
            document=build_document(
                operation,
                selections,
                [context.variable_definitions[name] for name in used],
                operation_name,
            ),
            variables={name: context.variables[name] for name in used if name in context.variables},
            operation_type=operation,
            operation_name=operation_name,
        )

    async def delegate(
        self, nodes: Sequence[FieldNode], context: OperationContext
    ) -> tuple[dict[str, Any], list[GraphQLError]]:
        """Resolve root fields through their subschemas.

        Lookups scheduled by all root requests are batched together, level by
        level, once every root request has answered.

        Returns:
            Merged (uncompleted) root data and the errors collected on the way
        """
        root_type = self.composed.type_graph.root_type_name(context.operation_type)
        if root_type is None:
            raise ValueError(f"Composed schema has no {context.operation_type.value} root type")
        steps = self.planner.plan_root(root_type, nodes)

        if context.operation_type is OperationType.MUTATION:
            outcomes = [await self._run_root_step(step, context) for step in steps]
        else:
            outcomes = list(await asyncio.gather(*(self._run_root_step(step, context) for step in steps)))

        data: dict[str, Any] = {}
        errors: list[GraphQLError] = []
        pending: list[_Pending] = []
        for step_data, step_errors, step_pending in outcomes:
            data.update(step_data)
            errors.extend(step_errors)
            pending.extend(step_pending)
        errors.extend(await self._resolve_lookups(pending, context))
        return data, errors

    async def _run_root_step(
        self, step: DelegationStep, context: OperationContext
    ) -> tuple[dict[str, Any], list[GraphQLError], list[_Pending]]:
        request = self._request(context.operation_type, step.selections, context, context.operation_name)
        result = await self.dispatch(step.subschema, request)

        if result.data is None:
            errors = _locate_failure(result.errors or [], [(key,) for key in step.response_keys])
            return {key: None for key in step.response_keys}, errors, []

        return result.data, list(result.errors or []), [(result.data, step.lookups, ())]

    async def _resolve_lookups(self, pending: Sequence[_Pending], context: OperationContext) -> list[GraphQLError]:
        batches: dict[str, list[_LookupTarget]] = {}
        for root, lookups, base in pending:
            for lookup in lookups:
                for obj, path in _walk(root, lookup.path, base):
                    batches.setdefault(lookup.target, []).append(_LookupTarget(obj, path, lookup))
        if not batches:
            return []

        outcomes = await asyncio.gather(
            *(self._run_lookup_batch(target, targets, context) for target, targets in batches.items())
        )

        errors: list[GraphQLError] = []
        next_pending: list[_Pending] = []
        for batch_errors, batch_pending in outcomes:
            errors.extend(batch_errors)
            next_pending.extend(batch_pending)
        if next_pending:
            errors.extend(await self._resolve_lookups(next_pending, context))
        return errors

    def _lookup_argument(self, type_name: str, target: str, key_value: Any) -> tuple[str, ArgumentNode]:
        config = self.composed.plan.lookup(type_name, target)
        query_type = self.composed.schema.query_type
        if config is None or query_type is None:
            raise KeyError(f"'{target}' has no lookup field for type '{type_name}'")
        arg_type = query_type.fields[config.field_name].args[config.argument].type
        value_node = ast_from_value(key_value, arg_type)
        return config.field_name, ArgumentNode(name=NameNode(value=config.argument), value=value_node)

    async def _run_lookup_batch(
        self, target: str, targets: Sequence[_LookupTarget], context: OperationContext
    ) -> tuple[list[GraphQLError], list[_Pending]]:
        errors: list[GraphQLError] = []
        selections: list[FieldNode] = []
        sent: dict[str, tuple[_LookupTarget, DelegationStep]] = {}

        for target_item in targets:
            lookup = target_item.lookup
            key = self.composed.plan.keys[lookup.type_name]
            key_value = target_item.obj.get(KEY_ALIAS_PREFIX + key)
            if key_value is None:
                message = f"Cannot fetch '{lookup.type_name}' fields from '{target}' without its key '{key}'"
                errors.extend(GraphQLError(message, path=list(path)) for path in self._null_fields(target_item))
                continue

            step = self.planner.split(lookup.type_name, lookup.selections, target)
            field_name, argument = self._lookup_argument(lookup.type_name, target, key_value)
            alias = f"{LOOKUP_ALIAS_PREFIX}{len(sent)}"
            selections.append(make_field(field_name, alias=alias, arguments=(argument,), selections=step.selections))
            sent[alias] = (target_item, step)

        if not sent:
            return errors, []

        result = await self.dispatch(target, self._request(OperationType.QUERY, selections, context))
        data = result.data or {}

        failed: dict[str, list[ResponsePath]] = {}
        pending: list[_Pending] = []
        for alias, (target_item, step) in sent.items():
            fetched = data.get(alias)
            if isinstance(fetched, dict):
                target_item.obj.update(fetched)
                pending.append((target_item.obj, step.lookups, target_item.path))
            else:
                failed[alias] = self._null_fields(target_item)

        unlocated: list[GraphQLError] = []
        for error in result.errors or []:
            error_path = list(error.path or [])
            if not error_path or error_path[0] not in sent:
                unlocated.append(error)
                continue
            target_item, _ = sent[error_path[0]]
            if len(error_path) > 1:
                failed.pop(error_path[0], None)
                errors.append(relocate_error(error, [*target_item.path, *error_path[1:]]))
            else:
                # the lookup field itself failed: report it on each field it was fetching
                paths = failed.pop(error_path[0], None) or [target_item.path]
                errors.extend(relocate_error(error, path) for path in paths)

        unexplained = [path for paths in failed.values() for path in paths]
        if not unexplained:
            errors.extend(unlocated)
        elif unlocated:
            errors.extend(relocate_error(error, path) for path in unexplained for error in unlocated)
        else:
            for alias, paths in failed.items():
                target_item, _ = sent[alias]
                key = self.composed.plan.keys[target_item.lookup.type_name]
                message = (
                    f"Service '{target}' returned no '{target_item.lookup.type_name}' "
                    f"for {key} '{target_item.obj.get(KEY_ALIAS_PREFIX + key)}'"
                )
                errors.extend(not_found(message, path) for path in paths)
        return errors, pending

    @staticmethod
    def _null_fields(target_item: _LookupTarget) -> list[ResponsePath]:
        paths: list[ResponsePath] = []
        for node in target_item.lookup.selections:
            key = response_key(node)
            target_item.obj[key] = None
            paths.append((*target_item.path, key))
        return paths

    def complete(
        self,
        data: dict[str, Any],
        type_name: str,
        nodes: Sequence[FieldNode],
        errors: list[GraphQLError] | None = None,
    ) -> dict[str, Any] | None:
        """Shape merged data after the original selection, dropping hidden fields.

        A null in a non-null position nulls the nearest nullable parent;
        ``None`` is returned when that reaches the root. Such a null is reported
        in ``errors`` unless an error is already recorded at or below its path.
        """
        sink = errors if errors is not None else []
        try:
            return self._complete_object(data, type_name, nodes, (), sink)
        except _NullBubble:
            return None

    def _complete_object(
        self,
        obj: dict[str, Any],
        type_name: str,
        nodes: Sequence[FieldNode],
        path: ResponsePath,
        errors: list[GraphQLError],
    ) -> dict[str, Any]:
        object_type = self.composed.schema.get_type(type_name)
        if not isinstance(object_type, GraphQLObjectType):
            raise TypeError(f"'{type_name}' is not an object type of the composed schema")

        completed: dict[str, Any] = {}
        for node in nodes:
            key = response_key(node)
            field_name = node.name.value
            if field_name.startswith("__"):
                completed[key] = obj.get(key, type_name if field_name == "__typename" else None)
                continue
            field_type = object_type.fields[field_name].type
            try:
                completed[key] = self._complete_value(
                    obj.get(key), field_type, node, (*path, key), f"{type_name}.{field_name}", errors
                )
            except _NullBubble:
                if is_non_null_type(field_type):
                    raise
                completed[key] = None
        return completed

    def _complete_value(
        self,
        value: Any,
        type_: GraphQLOutputType,
        node: FieldNode,
        path: ResponsePath,
        coordinate: str,
        errors: list[GraphQLError],
    ) -> Any:
        if is_non_null_type(type_):
            completed = self._complete_value(
                value, type_.of_type, node, path, coordinate, errors  # type: ignore[union-attr]
            )
            if completed is None:
                if not _has_error_at(errors, path):
                    errors.append(
                        GraphQLError(f"Cannot return null for non-nullable field {coordinate}.", path=list(path))
                    )
                raise _NullBubble
            return completed
        if value is None:
            return None
        if is_list_type(type_):
            if not isinstance(value, list):
                return None
            item_type = type_.of_type  # type: ignore[union-attr]
            return [
                self._complete_value(item, item_type, node, (*path, index), coordinate, errors)
                for index, item in enumerate(value)
            ]
        if is_object_type(type_):
            if not isinstance(value, dict) or node.selection_set is None:
                return None
            selections = [selection for selection in node.selection_set.selections if isinstance(selection, FieldNode)]
            return self._complete_object(value, type_.name, selections, path, errors)  # type: ignore[union-attr]
        return value


def _has_error_at(errors: Sequence[GraphQLError], path: ResponsePath) -> bool:
    return any(error.path is not None and tuple(error.path[: len(path)]) == path for error in errors)
