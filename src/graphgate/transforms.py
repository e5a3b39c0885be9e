"""Schema-level rewrites applied to a subschema before it is composed."""

from collections.abc import Callable, Iterable
from dataclasses import replace
from functools import reduce

from graphgate.typegraph import TypeGraph

Transform = Callable[[TypeGraph], TypeGraph]


def annotate(description: str | None, line: str) -> str:
    """Append ``line`` to a description, on a new line when text is already present.

    A description already ending with ``line`` is returned unchanged.
    """
    if not description:
        return line
    if description == line or description.endswith(f"\n{line}"):
        return description
    return f"{description}\n{line}"


class ProvenanceTransform:
    """Document which service resolves each field.

    Every field of every object type gets the line ``Resolved by <service>.``
    appended to its description. Nothing else about the field changes.
    """

    def __init__(self, service_name: str = "unknown") -> None:
        self.service_name = service_name

    @property
    def annotation(self) -> str:
        return f"Resolved by {self.service_name}."

    def __call__(self, graph: TypeGraph) -> TypeGraph:
        result = graph
        for type_def in graph.object_types():
            fields = tuple(
                replace(field_def, description=annotate(field_def.description, self.annotation))
                for field_def in type_def.fields
            )
            result = result.with_type(replace(type_def, fields=fields))
        return result

    def __repr__(self) -> str:
        return f"ProvenanceTransform(service_name={self.service_name!r})"


def apply_transforms(graph: TypeGraph, transforms: Iterable[Transform]) -> TypeGraph:
    """Apply transforms left to right."""
    return reduce(lambda current, transform: transform(current), transforms, graph)
