"""Selection set normalisation and sub-document construction."""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from graphql import (
    ArgumentNode,
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLIncludeDirective,
    GraphQLSkipDirective,
    InlineFragmentNode,
    NameNode,
    Node,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    VariableDefinitionNode,
    VariableNode,
    Visitor,
    visit,
)
from graphql.execution.values import get_directive_values

CONDITIONAL_DIRECTIVES = frozenset({GraphQLSkipDirective.name, GraphQLIncludeDirective.name})


def response_key(node: FieldNode) -> str:
    return node.alias.value if node.alias else node.name.value


def should_include(node: Node, variables: Mapping[str, Any]) -> bool:
    skip = get_directive_values(GraphQLSkipDirective, node, variables)  # type: ignore[arg-type]
    if skip and skip["if"]:
        return False
    include = get_directive_values(GraphQLIncludeDirective, node, variables)  # type: ignore[arg-type]
    return not (include and not include["if"])


def with_selections(node: FieldNode, selections: Sequence[FieldNode] | None) -> FieldNode:
    return FieldNode(
        alias=node.alias,
        name=node.name,
        arguments=node.arguments or (),
        directives=tuple(
            directive for directive in node.directives or () if directive.name.value not in CONDITIONAL_DIRECTIVES
        ),
        selection_set=SelectionSetNode(selections=tuple(selections)) if selections is not None else None,
    )


def make_field(
    name: str,
    alias: str | None = None,
    arguments: tuple[ArgumentNode, ...] = (),
    selections: Sequence[FieldNode] | None = None,
) -> FieldNode:
    return FieldNode(
        alias=NameNode(value=alias) if alias else None,
        name=NameNode(value=name),
        arguments=arguments,
        directives=(),
        selection_set=SelectionSetNode(selections=tuple(selections)) if selections is not None else None,
    )


def collect_fields(
    selection_set: SelectionSetNode,
    fragments: Mapping[str, FragmentDefinitionNode],
    variables: Mapping[str, Any],
) -> list[FieldNode]:
    """Flatten a selection set into plain fields, one per response key.

    Fragment spreads and inline fragments are inlined, ``@skip``/``@include``
    are evaluated and repeated response keys are merged, recursively.
    """
    grouped: dict[str, list[FieldNode]] = {}
    _collect(selection_set, fragments, variables, grouped, set())
    return [_merge_nodes(nodes, fragments, variables) for nodes in grouped.values()]


def _collect(
    selection_set: SelectionSetNode,
    fragments: Mapping[str, FragmentDefinitionNode],
    variables: Mapping[str, Any],
    grouped: dict[str, list[FieldNode]],
    visited: set[str],
) -> None:
    for selection in selection_set.selections:
        if not should_include(selection, variables):
            continue
        if isinstance(selection, FieldNode):
            grouped.setdefault(response_key(selection), []).append(selection)
        elif isinstance(selection, InlineFragmentNode):
            _collect(selection.selection_set, fragments, variables, grouped, visited)
        elif isinstance(selection, FragmentSpreadNode):
            name = selection.name.value
            if name in visited or name not in fragments:
                continue
            visited.add(name)
            _collect(fragments[name].selection_set, fragments, variables, grouped, visited)


def _merge_nodes(
    nodes: list[FieldNode],
    fragments: Mapping[str, FragmentDefinitionNode],
    variables: Mapping[str, Any],
) -> FieldNode:
    first = nodes[0]
    if first.selection_set is None:
        return with_selections(first, None)

    merged = SelectionSetNode(
        selections=tuple(
            selection for node in nodes if node.selection_set for selection in node.selection_set.selections
        )
    )
    return with_selections(first, collect_fields(merged, fragments, variables))


class _VariableCollector(Visitor):
    def __init__(self) -> None:
        super().__init__()
        self.names: list[str] = []

    def enter_variable(self, node: VariableNode, *_args: Any) -> None:
        if node.name.value not in self.names:
            self.names.append(node.name.value)


def variables_in(nodes: Iterable[Node]) -> list[str]:
    """Names of the variables referenced by the given nodes, in order of appearance."""
    collector = _VariableCollector()
    for node in nodes:
        visit(node, collector)
    return collector.names


def build_document(
    operation: OperationType,
    selections: Sequence[FieldNode],
    variable_definitions: Sequence[VariableDefinitionNode] = (),
    operation_name: str | None = None,
) -> DocumentNode:
    return DocumentNode(
        definitions=(
            OperationDefinitionNode(
                operation=operation,
                name=NameNode(value=operation_name) if operation_name else None,
                variable_definitions=tuple(variable_definitions),
                directives=(),
                selection_set=SelectionSetNode(selections=tuple(selections)),
            ),
        )
    )
