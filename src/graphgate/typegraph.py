"""Structural type graph records.

A :class:`TypeGraph` is the plain-data view of one GraphQL schema that the
composer works with: every named type is a :class:`TypeDef` tagged with its
:class:`TypeKind`, and every object type carries its :class:`FieldDef` records.
Records are frozen; rewrites (transforms, merges) build new records with
:func:`dataclasses.replace` instead of mutating graphql-core objects in place.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum

from graphql import (
    ArgumentNode,
    DirectiveNode,
    DocumentNode,
    EnumTypeDefinitionNode,
    EnumValueDefinitionNode,
    FieldDefinitionNode,
    GraphQLArgument,
    GraphQLEnumType,
    GraphQLError,
    GraphQLInputObjectType,
    GraphQLObjectType,
    GraphQLScalarType,
    GraphQLSchema,
    InputObjectTypeDefinitionNode,
    InputValueDefinitionNode,
    ListTypeNode,
    NamedTypeNode,
    NameNode,
    NonNullTypeNode,
    ObjectTypeDefinitionNode,
    OperationType,
    OperationTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    SchemaDefinitionNode,
    StringValueNode,
    TypeNode,
    Undefined,
    ast_from_value,
    build_ast_schema,
    build_schema,
    parse_type,
    parse_value,
    print_ast,
    print_schema,
)

from graphgate.errors import TypeGraphError

BUILTIN_SCALARS = frozenset({"ID", "String", "Int", "Float", "Boolean"})
ROOT_TYPE_NAMES = {
    OperationType.QUERY: "Query",
    OperationType.MUTATION: "Mutation",
    OperationType.SUBSCRIPTION: "Subscription",
}


def is_introspection_type(type_name: str) -> bool:
    return type_name.startswith("__")


def is_builtin_scalar_type(type_name: str) -> bool:
    return type_name in BUILTIN_SCALARS


def is_root_type(type_name: str) -> bool:
    return type_name in ROOT_TYPE_NAMES.values()


def named_type_name(type_ref: str) -> str:
    """Return the named type at the core of a type reference such as ``[Book!]!``."""
    node: TypeNode = parse_type(type_ref)
    while isinstance(node, ListTypeNode | NonNullTypeNode):
        node = node.type
    if not isinstance(node, NamedTypeNode):
        raise TypeGraphError(f"Invalid type reference: {type_ref}")
    return node.name.value


class TypeKind(str, Enum):
    OBJECT = "object"
    SCALAR = "scalar"
    ENUM = "enum"
    INPUT_OBJECT = "input"


OUTPUT_KINDS = frozenset({TypeKind.OBJECT, TypeKind.SCALAR, TypeKind.ENUM})
INPUT_KINDS = frozenset({TypeKind.SCALAR, TypeKind.ENUM, TypeKind.INPUT_OBJECT})


@dataclass(frozen=True)
class ArgumentDef:
    name: str
    type: str
    description: str | None = None
    default_value: str | None = None


@dataclass(frozen=True)
class FieldDef:
    name: str
    type: str
    description: str | None = None
    args: tuple[ArgumentDef, ...] = ()
    deprecation_reason: str | None = None

    @property
    def named_type(self) -> str:
        return named_type_name(self.type)

    def signature(self) -> tuple[str, tuple[tuple[str, str, str | None], ...]]:
        """Structural identity of the field, ignoring documentation."""
        return self.type, tuple((arg.name, arg.type, arg.default_value) for arg in self.args)


@dataclass(frozen=True)
class TypeDef:
    name: str
    kind: TypeKind
    description: str | None = None
    fields: tuple[FieldDef, ...] = ()
    values: tuple[str, ...] = ()

    def field(self, name: str) -> FieldDef | None:
        return next((field_def for field_def in self.fields if field_def.name == name), None)

    @property
    def field_names(self) -> list[str]:
        return [field_def.name for field_def in self.fields]

    def signature(self) -> tuple[TypeKind, tuple[tuple[str, object], ...], tuple[str, ...]]:
        fields = tuple(sorted((field_def.name, field_def.signature()) for field_def in self.fields))
        return self.kind, fields, tuple(sorted(self.values))


@dataclass(frozen=True)
class TypeGraph:
    """Named types of one schema plus its root type names.

    The mapping is never mutated after construction; use :meth:`with_type`
    to derive a modified graph.
    """

    types: Mapping[str, TypeDef] = field(default_factory=dict)
    query: str = "Query"
    mutation: str | None = None
    subscription: str | None = None

    @classmethod
    def from_schema(cls, schema: GraphQLSchema) -> "TypeGraph":
        """Build a type graph from a graphql-core schema.

        Raises:
            TypeGraphError: If the schema uses interfaces, unions or non-canonical root names
        """
        if schema.query_type is None:
            raise TypeGraphError("Schema has no query type")

        roots = {
            OperationType.QUERY: schema.query_type,
            OperationType.MUTATION: schema.mutation_type,
            OperationType.SUBSCRIPTION: schema.subscription_type,
        }
        for operation, root in roots.items():
            if root is not None and root.name != ROOT_TYPE_NAMES[operation]:
                raise TypeGraphError(
                    f"Root {operation.value} type must be named '{ROOT_TYPE_NAMES[operation]}', got '{root.name}'"
                )

        types: dict[str, TypeDef] = {}
        for type_name, type_obj in schema.type_map.items():
            if is_introspection_type(type_name) or is_builtin_scalar_type(type_name):
                continue
            types[type_name] = _typedef_from_graphql(type_obj)

        return cls(
            types=types,
            query=schema.query_type.name,
            mutation=schema.mutation_type.name if schema.mutation_type else None,
            subscription=schema.subscription_type.name if schema.subscription_type else None,
        )

    @classmethod
    def from_sdl(cls, sdl: str) -> "TypeGraph":
        try:
            schema = build_schema(sdl)
        except (GraphQLError, TypeError) as e:
            raise TypeGraphError(f"Invalid schema definition: {e}") from e
        return cls.from_schema(schema)

    @property
    def root_type_names(self) -> tuple[str, ...]:
        return tuple(name for name in (self.query, self.mutation, self.subscription) if name)

    def root_type_name(self, operation: OperationType) -> str | None:
        return {
            OperationType.QUERY: self.query,
            OperationType.MUTATION: self.mutation,
            OperationType.SUBSCRIPTION: self.subscription,
        }[operation]

    def get(self, type_name: str) -> TypeDef | None:
        return self.types.get(type_name)

    def object_types(self) -> list[TypeDef]:
        return [type_def for type_def in self.types.values() if type_def.kind is TypeKind.OBJECT]

    def iter_fields(self) -> Iterator[tuple[TypeDef, FieldDef]]:
        for type_def in self.object_types():
            for field_def in type_def.fields:
                yield type_def, field_def

    def field_count(self) -> int:
        return sum(len(type_def.fields) for type_def in self.object_types())

    def with_type(self, type_def: TypeDef) -> "TypeGraph":
        return replace(self, types={**self.types, type_def.name: type_def})

    def validate(self) -> None:
        """Check that every referenced type exists and field names are unique.

        Raises:
            TypeGraphError: On the first violation found
        """
        query_type = self.types.get(self.query)
        if query_type is None or query_type.kind is not TypeKind.OBJECT:
            raise TypeGraphError(f"Query root type '{self.query}' is not an object type in the graph")
        for root_name in (self.mutation, self.subscription):
            if root_name and (root_name not in self.types or self.types[root_name].kind is not TypeKind.OBJECT):
                raise TypeGraphError(f"Root type '{root_name}' is not an object type in the graph")

        for type_def in self.types.values():
            if type_def.kind is TypeKind.ENUM and not type_def.values:
                raise TypeGraphError(f"Enum type '{type_def.name}' has no values")
            if type_def.kind not in (TypeKind.OBJECT, TypeKind.INPUT_OBJECT):
                continue
            if not type_def.fields:
                raise TypeGraphError(f"Type '{type_def.name}' has no fields")

            seen: set[str] = set()
            for field_def in type_def.fields:
                if field_def.name in seen:
                    raise TypeGraphError(f"Field '{type_def.name}.{field_def.name}' is defined more than once")
                seen.add(field_def.name)

                allowed = OUTPUT_KINDS if type_def.kind is TypeKind.OBJECT else INPUT_KINDS
                self._check_reference(f"{type_def.name}.{field_def.name}", field_def.type, allowed)
                for arg in field_def.args:
                    self._check_reference(f"{type_def.name}.{field_def.name}({arg.name})", arg.type, INPUT_KINDS)

    def _check_reference(self, location: str, type_ref: str, allowed: frozenset[TypeKind]) -> None:
        name = named_type_name(type_ref)
        if is_builtin_scalar_type(name):
            return
        target = self.types.get(name)
        if target is None:
            raise TypeGraphError(f"'{location}' references unknown type '{name}'")
        if target.kind not in allowed:
            raise TypeGraphError(f"'{location}' cannot use {target.kind.value} type '{name}' here")

    def to_document(self) -> DocumentNode:
        definitions: list = [
            SchemaDefinitionNode(
                directives=(),
                operation_types=tuple(
                    OperationTypeDefinitionNode(operation=operation, type=_named_type_node(name))
                    for operation, name in (
                        (OperationType.QUERY, self.query),
                        (OperationType.MUTATION, self.mutation),
                        (OperationType.SUBSCRIPTION, self.subscription),
                    )
                    if name
                ),
            )
        ]
        definitions.extend(_typedef_to_ast(type_def) for type_def in self.types.values())
        return DocumentNode(definitions=tuple(definitions))

    def to_schema(self) -> GraphQLSchema:
        """Build a graphql-core schema (without resolvers) from the graph."""
        self.validate()
        try:
            return build_ast_schema(self.to_document())
        except (GraphQLError, TypeError) as e:
            raise TypeGraphError(f"Cannot build schema: {e}") from e

    def print_sdl(self) -> str:
        return print_schema(self.to_schema())


def _print_default(arg: GraphQLArgument) -> str | None:
    if arg.ast_node is not None and arg.ast_node.default_value is not None:
        return print_ast(arg.ast_node.default_value)
    if arg.default_value is Undefined:
        return None
    value_node = ast_from_value(arg.default_value, arg.type)
    return print_ast(value_node) if value_node else None


def _typedef_from_graphql(type_obj: object) -> TypeDef:
    if isinstance(type_obj, GraphQLObjectType):
        if type_obj.interfaces:
            raise TypeGraphError(f"Type '{type_obj.name}' implements interfaces, which are not supported")
        fields = tuple(
            FieldDef(
                name=field_name,
                type=str(field_obj.type),
                description=field_obj.description,
                args=tuple(
                    ArgumentDef(
                        name=arg_name,
                        type=str(arg.type),
                        description=arg.description,
                        default_value=_print_default(arg),
                    )
                    for arg_name, arg in field_obj.args.items()
                ),
                deprecation_reason=field_obj.deprecation_reason,
            )
            for field_name, field_obj in type_obj.fields.items()
        )
        return TypeDef(type_obj.name, TypeKind.OBJECT, type_obj.description, fields=fields)

    if isinstance(type_obj, GraphQLInputObjectType):
        fields = tuple(
            FieldDef(
                name=field_name,
                type=str(input_field.type),
                description=input_field.description,
            )
            for field_name, input_field in type_obj.fields.items()
        )
        return TypeDef(type_obj.name, TypeKind.INPUT_OBJECT, type_obj.description, fields=fields)

    if isinstance(type_obj, GraphQLEnumType):
        return TypeDef(type_obj.name, TypeKind.ENUM, type_obj.description, values=tuple(type_obj.values))

    if isinstance(type_obj, GraphQLScalarType):
        return TypeDef(type_obj.name, TypeKind.SCALAR, type_obj.description)

    name = getattr(type_obj, "name", type_obj)
    raise TypeGraphError(f"Type '{name}' is of an unsupported kind: {type(type_obj).__name__}")


def _name(value: str) -> NameNode:
    return NameNode(value=value)


def _named_type_node(name: str) -> NamedTypeNode:
    return NamedTypeNode(name=_name(name))


def _description(text: str | None) -> StringValueNode | None:
    return StringValueNode(value=text, block=True) if text is not None else None


def _deprecated(reason: str | None) -> tuple[DirectiveNode, ...]:
    if reason is None:
        return ()
    return (
        DirectiveNode(
            name=_name("deprecated"),
            arguments=(ArgumentNode(name=_name("reason"), value=StringValueNode(value=reason)),),
        ),
    )


def _field_to_ast(field_def: FieldDef) -> FieldDefinitionNode:
    return FieldDefinitionNode(
        name=_name(field_def.name),
        description=_description(field_def.description),
        arguments=tuple(
            InputValueDefinitionNode(
                name=_name(arg.name),
                description=_description(arg.description),
                type=parse_type(arg.type),
                default_value=parse_value(arg.default_value) if arg.default_value is not None else None,
                directives=(),
            )
            for arg in field_def.args
        ),
        type=parse_type(field_def.type),
        directives=_deprecated(field_def.deprecation_reason),
    )


def _typedef_to_ast(type_def: TypeDef) -> object:
    common = {"name": _name(type_def.name), "description": _description(type_def.description), "directives": ()}
    if type_def.kind is TypeKind.OBJECT:
        return ObjectTypeDefinitionNode(
            **common, interfaces=(), fields=tuple(_field_to_ast(field_def) for field_def in type_def.fields)
        )
    if type_def.kind is TypeKind.INPUT_OBJECT:
        return InputObjectTypeDefinitionNode(
            **common,
            fields=tuple(
                InputValueDefinitionNode(
                    name=_name(field_def.name),
                    description=_description(field_def.description),
                    type=parse_type(field_def.type),
                    directives=(),
                )
                for field_def in type_def.fields
            ),
        )
    if type_def.kind is TypeKind.ENUM:
        return EnumTypeDefinitionNode(
            **common,
            values=tuple(EnumValueDefinitionNode(name=_name(value), directives=()) for value in type_def.values),
        )
    return ScalarTypeDefinitionNode(**common)
