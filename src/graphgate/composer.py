"""Compose independent subschemas into one schema plus a delegation plan.

Types are merged by name and object fields by field name. Conflicts are settled
by :data:`MERGE_RULES`, one rule per type kind:

==============  ===========================================================
Kind            Rule
==============  ===========================================================
object          Union of fields. A field defined by two subschemas is an
                ambiguous owner and fails composition, unless it is the
                declared key of a merged type and identical everywhere.
scalar          Definitions must be identical.
enum            Value sets must be identical.
input           Field sets and field types must be identical.
==============  ===========================================================

Different kinds under one name always fail. For every kind the last non-empty
description wins.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace

from graphql import GraphQLSchema

from graphgate import log
from graphgate.errors import CompositionError, TypeGraphError
from graphgate.executors import Executor
from graphgate.transforms import Transform, apply_transforms
from graphgate.typegraph import FieldDef, TypeDef, TypeGraph, TypeKind, is_root_type


@dataclass(frozen=True)
class MergedTypeConfig:
    """How to fetch an object of a merged type from one subschema.

    Attributes:
        key: Field identifying the object in every subschema defining the type
        field_name: Root query field of the subschema returning the object
        argument: Argument of ``field_name`` receiving the key value
    """

    key: str
    field_name: str
    argument: str = "id"


@dataclass(frozen=True)
class Subschema:
    name: str
    type_graph: TypeGraph
    executor: Executor
    transforms: tuple[Transform, ...] = ()
    merge: Mapping[str, MergedTypeConfig] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(frozen=True)
class DelegationPlan:
    """Routing table of a composed schema.

    ``owners`` maps every ``(type name, field name)`` to the subschema it came
    from. Key fields of merged types are shared: any subschema resolving the
    parent object can also resolve its key.
    """

    owners: Mapping[tuple[str, str], str]
    keys: Mapping[str, str] = field(default_factory=dict)
    lookups: Mapping[tuple[str, str], MergedTypeConfig] = field(default_factory=dict)

    def owner(self, type_name: str, field_name: str) -> str:
        try:
            return self.owners[(type_name, field_name)]
        except KeyError:
            raise KeyError(f"No subschema resolves '{type_name}.{field_name}'") from None

    def owner_for(self, type_name: str, field_name: str, current: str) -> str:
        """Owner of a field when the parent object is being resolved by ``current``."""
        if self.keys.get(type_name) == field_name:
            return current
        return self.owner(type_name, field_name)

    def lookup(self, type_name: str, subschema: str) -> MergedTypeConfig | None:
        return self.lookups.get((type_name, subschema))

    def fields_of(self, subschema: str) -> list[tuple[str, str]]:
        return [coordinate for coordinate, owner in self.owners.items() if owner == subschema]

    def as_dict(self) -> dict[str, str]:
        return {f"{type_name}.{field_name}": owner for (type_name, field_name), owner in self.owners.items()}


@dataclass(frozen=True)
class ComposedSchema:
    type_graph: TypeGraph
    schema: GraphQLSchema
    plan: DelegationPlan
    subschemas: Mapping[str, Subschema]

    def field(self, type_name: str, field_name: str) -> FieldDef:
        type_def = self.type_graph.get(type_name)
        field_def = type_def.field(field_name) if type_def else None
        if field_def is None:
            raise KeyError(f"'{type_name}.{field_name}' is not part of the composed schema")
        return field_def

    def print_sdl(self) -> str:
        return self.type_graph.print_sdl()


@dataclass
class _MergeState:
    keys: Mapping[str, str]
    owners: dict[tuple[str, str], str] = field(default_factory=dict)
    definers: dict[str, list[str]] = field(default_factory=dict)
    subschema: str = ""


MergeRule = Callable[[TypeDef, TypeDef, _MergeState], TypeDef]


def _merge_object(existing: TypeDef, incoming: TypeDef, state: _MergeState) -> TypeDef:
    fields = list(existing.fields)
    for field_def in incoming.fields:
        current = existing.field(field_def.name)
        if current is None:
            fields.append(field_def)
            state.owners[(existing.name, field_def.name)] = state.subschema
            continue

        is_shared_key = not is_root_type(existing.name) and state.keys.get(existing.name) == field_def.name
        if is_shared_key and current.signature() == field_def.signature():
            continue

        owner = state.owners[(existing.name, field_def.name)]
        if is_shared_key:
            raise CompositionError(
                f"Key field '{existing.name}.{field_def.name}' has a different definition "
                f"in '{owner}' and '{state.subschema}'"
            )
        raise CompositionError(
            f"Field '{existing.name}.{field_def.name}' is defined by both '{owner}' and '{state.subschema}'; "
            "ownership is ambiguous"
        )

    return replace(existing, description=incoming.description or existing.description, fields=tuple(fields))


def _merge_identical(existing: TypeDef, incoming: TypeDef, state: _MergeState) -> TypeDef:
    if existing.signature() != incoming.signature():
        previous = ", ".join(state.definers[existing.name])
        raise CompositionError(
            f"{existing.kind.value.capitalize()} type '{existing.name}' is defined differently "
            f"by '{previous}' and '{state.subschema}'"
        )
    return replace(existing, description=incoming.description or existing.description)


MERGE_RULES: dict[TypeKind, MergeRule] = {
    TypeKind.OBJECT: _merge_object,
    TypeKind.SCALAR: _merge_identical,
    TypeKind.ENUM: _merge_identical,
    TypeKind.INPUT_OBJECT: _merge_identical,
}


def merge_type(existing: TypeDef, incoming: TypeDef, state: _MergeState) -> TypeDef:
    if existing.kind is not incoming.kind:
        previous = ", ".join(state.definers[existing.name])
        raise CompositionError(
            f"Type '{existing.name}' is a {existing.kind.value} in '{previous}' "
            f"but a {incoming.kind.value} in '{state.subschema}'"
        )
    return MERGE_RULES[existing.kind](existing, incoming, state)


def _collect_merge_config(
    annotated: Sequence[tuple[Subschema, TypeGraph]],
) -> tuple[dict[str, str], dict[tuple[str, str], MergedTypeConfig]]:
    keys: dict[str, str] = {}
    lookups: dict[tuple[str, str], MergedTypeConfig] = {}

    for subschema, graph in annotated:
        for type_name, config in subschema.merge.items():
            location = f"Merge configuration of '{type_name}' in '{subschema.name}'"
            type_def = graph.get(type_name)
            if type_def is None or type_def.kind is not TypeKind.OBJECT or is_root_type(type_name):
                raise CompositionError(f"{location} does not refer to an object type of that subschema")
            if type_def.field(config.key) is None:
                raise CompositionError(f"{location} uses key '{config.key}', which the type does not define")

            root_field = graph.types[graph.query].field(config.field_name)
            if root_field is None:
                raise CompositionError(f"{location} uses unknown root field '{config.field_name}'")
            if root_field.named_type != type_name:
                raise CompositionError(f"{location}: root field '{config.field_name}' does not return '{type_name}'")
            if config.argument not in {arg.name for arg in root_field.args}:
                raise CompositionError(
                    f"{location}: root field '{config.field_name}' has no argument '{config.argument}'"
                )
            missing = [
                arg.name for arg in root_field.args if arg.type.endswith("!") and arg.name != config.argument
            ]
            if missing:
                raise CompositionError(
                    f"{location}: root field '{config.field_name}' requires other arguments: {', '.join(missing)}"
                )

            if keys.setdefault(type_name, config.key) != config.key:
                raise CompositionError(
                    f"{location} uses key '{config.key}' but another subschema uses '{keys[type_name]}'"
                )
            lookups[(type_name, subschema.name)] = config

    return keys, lookups


def _check_merged_types(
    annotated: Sequence[tuple[Subschema, TypeGraph]],
    state: _MergeState,
    lookups: Mapping[tuple[str, str], MergedTypeConfig],
) -> None:
    graphs = {subschema.name: graph for subschema, graph in annotated}

    for type_name, definers in state.definers.items():
        if len(definers) < 2 or is_root_type(type_name):
            continue
        if graphs[definers[0]].types[type_name].kind is not TypeKind.OBJECT:
            continue

        key = state.keys.get(type_name)
        if key is None:
            raise CompositionError(
                f"Object type '{type_name}' is defined by {', '.join(definers)} but no merge key is configured"
            )
        for name in definers:
            type_def = graphs[name].types[type_name]
            if type_def.field(key) is None:
                raise CompositionError(f"'{name}' defines '{type_name}' without its key field '{key}'")
            contributes = any(
                state.owners.get((type_name, field_name)) == name
                for field_name in type_def.field_names
                if field_name != key
            )
            if contributes and (type_name, name) not in lookups:
                raise CompositionError(
                    f"'{name}' contributes fields to merged type '{type_name}' but declares no way to fetch it"
                )


def _root_name(graphs: Sequence[TypeGraph], attribute: str) -> str | None:
    names = {getattr(graph, attribute) for graph in graphs} - {None}
    return names.pop() if names else None


def compose_schemas(subschemas: Sequence[Subschema]) -> ComposedSchema:
    """Merge subschemas into one composed schema and build its delegation plan.

    Each subschema's transforms are applied in order before merging.

    Args:
        subschemas: Subschemas in composition order

    Returns:
        The composed schema

    Raises:
        CompositionError: If the subschemas cannot be merged unambiguously
    """
    if not subschemas:
        raise CompositionError("At least one subschema is required")

    seen: set[str] = set()
    annotated: list[tuple[Subschema, TypeGraph]] = []
    for subschema in subschemas:
        if subschema.name in seen:
            raise CompositionError(f"Subschema name '{subschema.name}' is used more than once")
        seen.add(subschema.name)
        try:
            subschema.type_graph.validate()
            graph = apply_transforms(subschema.type_graph, subschema.transforms)
            graph.validate()
        except TypeGraphError as e:
            raise CompositionError(f"Subschema '{subschema.name}' is invalid: {e}") from e
        if (graph.query, graph.mutation, graph.subscription) != (
            "Query",
            graph.mutation and "Mutation",
            graph.subscription and "Subscription",
        ):
            raise CompositionError(f"Subschema '{subschema.name}' must name its root types Query/Mutation/Subscription")
        annotated.append((subschema, graph))

    keys, lookups = _collect_merge_config(annotated)
    state = _MergeState(keys=keys)
    types: dict[str, TypeDef] = {}

    for subschema, graph in annotated:
        state.subschema = subschema.name
        for type_name, type_def in graph.types.items():
            existing = types.get(type_name)
            if existing is None:
                types[type_name] = type_def
                if type_def.kind is TypeKind.OBJECT:
                    for field_def in type_def.fields:
                        state.owners[(type_name, field_def.name)] = subschema.name
            else:
                types[type_name] = merge_type(existing, type_def, state)
            state.definers.setdefault(type_name, []).append(subschema.name)

    _check_merged_types(annotated, state, lookups)

    graphs = [graph for _, graph in annotated]
    composed_graph = TypeGraph(
        types=types,
        query="Query",
        mutation=_root_name(graphs, "mutation"),
        subscription=_root_name(graphs, "subscription"),
    )
    try:
        schema = composed_graph.to_schema()
    except TypeGraphError as e:
        raise CompositionError(f"Composed schema is invalid: {e}") from e

    plan = DelegationPlan(owners=dict(state.owners), keys=keys, lookups=lookups)
    log.info(
        f"Composed {len(subschemas)} subschema(s) into {len(types)} types "
        f"and {composed_graph.field_count()} fields"
    )
    return ComposedSchema(
        type_graph=composed_graph,
        schema=schema,
        plan=plan,
        subschemas={subschema.name: subschema for subschema, _ in annotated},
    )
