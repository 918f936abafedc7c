# Copyright 2024-present Kensho Technologies, LLC.
from typing import Optional, Sequence, Tuple, Union

from graphql.error import GraphQLSyntaxError
from graphql.language.ast import (
    ArgumentNode,
    DirectiveNode,
    DocumentNode,
    ListTypeNode,
    NamedTypeNode,
    NonNullTypeNode,
    StringValueNode,
    TypeNode,
)
from graphql.language.parser import parse

from .exceptions import SchemaParsingError


def get_ast_field_name(ast):
    """Return the field name for the given AST node."""
    return ast.name.value


def safe_parse_graphql(graphql_string: str) -> DocumentNode:
    """Return an AST representation of the given GraphQL input, reraising GraphQL library errors."""
    try:
        ast = parse(graphql_string)
    except GraphQLSyntaxError as e:
        raise SchemaParsingError(e) from e

    return ast


def get_document_ast(schema: Union[str, DocumentNode]) -> DocumentNode:
    """Return the Document AST for the schema, parsing it first if given as a string."""
    if isinstance(schema, DocumentNode):
        return schema
    elif isinstance(schema, str):
        return safe_parse_graphql(schema)
    else:
        raise AssertionError(
            "Expected a schema string or a parsed DocumentNode, got {} of type {}.".format(
                schema, type(schema).__name__
            )
        )


def get_ast_with_non_null_stripped(ast):
    """Strip a NonNullType layer around the AST if there is one, return the underlying AST."""
    if isinstance(ast, NonNullTypeNode):
        stripped_ast = ast.type
        if isinstance(stripped_ast, NonNullTypeNode):
            raise AssertionError(
                "NonNullType is unexpectedly found to wrap around another NonNullType in AST "
                "{}, which is not allowed.".format(ast)
            )
        return stripped_ast
    else:
        return ast


def get_ast_with_non_null_and_list_stripped(ast):
    """Strip any NonNullType or List layers around the AST, return the underlying AST."""
    while isinstance(ast, (NonNullTypeNode, ListTypeNode)):
        ast = ast.type
    return ast


def describe_type_node(type_node: TypeNode) -> Tuple[str, bool, bool]:
    """Return the (named type, is required, is list) description of a field or argument type.

    Only the outermost non-null and list wrappers are reported: "[User!]!" is described as
    ("User", True, True), and "String" as ("String", False, False).
    """
    is_required = isinstance(type_node, NonNullTypeNode)
    unwrapped = get_ast_with_non_null_stripped(type_node)
    is_list = isinstance(unwrapped, ListTypeNode)

    named_type = get_ast_with_non_null_and_list_stripped(unwrapped)
    if not isinstance(named_type, NamedTypeNode):
        raise AssertionError("Unexpected type node after unwrapping: {}".format(named_type))

    return named_type.name.value, is_required, is_list


def find_directive(
    directive_name: str, directives: Optional[Sequence[DirectiveNode]]
) -> Optional[DirectiveNode]:
    """Return the first directive with the given name, or None if there is no such directive."""
    for directive in directives or ():
        if directive.name.value == directive_name:
            return directive
    return None


def find_argument(
    argument_name: str, arguments: Optional[Sequence[ArgumentNode]]
) -> Optional[ArgumentNode]:
    """Return the argument with the given name, or None if there is no such argument."""
    for argument in arguments or ():
        if argument.name.value == argument_name:
            return argument
    return None


def get_string_argument_value(
    directive: DirectiveNode, argument_name: Optional[str] = None
) -> Optional[str]:
    """Return the string value of a directive argument, or None if it is absent or not a string.

    If no argument name is given, the directive's first argument is used.
    """
    if argument_name is None:
        argument = directive.arguments[0] if directive.arguments else None
    else:
        argument = find_argument(argument_name, directive.arguments)

    if argument is None or not isinstance(argument.value, StringValueNode):
        return None
    return argument.value.value
