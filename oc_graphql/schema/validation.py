# Copyright 2024-present Kensho Technologies, LLC.
"""Validate that a schema is well-formed GraphQL and uses the supported directives correctly."""
from collections import OrderedDict
from typing import Dict, List, Union

from graphql import GraphQLError, build_ast_schema, validate_schema as validate_graphql_schema
from graphql.language.ast import (
    DirectiveDefinitionNode,
    DirectiveNode,
    DocumentNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    ScalarTypeDefinitionNode,
)

from ..ast_manipulation import (
    find_directive,
    get_ast_field_name,
    get_document_ast,
    safe_parse_graphql,
)
from ..compiler.join_tables import JOIN_TABLE_MACRO_PATTERN
from ..exceptions import SchemaValidationError
from ..extraction import extract_schema_metadata
from ..metadata import SchemaMetadata
from . import (
    AWS_DATETIME_TYPE_NAME,
    DIRECTIVES_SDL,
    ResolverDirective,
    TaskDirective,
    TaskResponseDirective,
    is_primitive_type_name,
)


def _build_graphql_schema(document_ast: DocumentNode) -> None:
    """Build the schema with graphql-core, raising SchemaValidationError on any problem."""
    declared_names = {
        get_ast_field_name(definition)
        for definition in document_ast.definitions
        if isinstance(definition, (DirectiveDefinitionNode, ScalarTypeDefinitionNode))
    }

    prelude_ast = safe_parse_graphql(DIRECTIVES_SDL + "\nscalar {}".format(AWS_DATETIME_TYPE_NAME))
    # Schemas may declare the directives or the scalar themselves, in which case their own
    # declaration is used.
    prelude_definitions = [
        definition
        for definition in prelude_ast.definitions
        if get_ast_field_name(definition) not in declared_names
    ]
    full_ast = DocumentNode(definitions=prelude_definitions + list(document_ast.definitions))

    try:
        graphql_schema = build_ast_schema(full_ast)
    except (TypeError, GraphQLError) as e:
        raise SchemaValidationError("GraphQL schema validation failed:\n{}".format(e)) from e

    errors = validate_graphql_schema(graphql_schema)
    if errors:
        raise SchemaValidationError(
            "GraphQL schema validation failed:\n{}".format(
                "\n".join(error.message for error in errors)
            )
        )


def _check_type_markers(document_ast: DocumentNode) -> List[str]:
    # A type's markers may be split between its definition and its extensions.
    directives_by_type_name: Dict[str, List[DirectiveNode]] = OrderedDict()
    for definition in document_ast.definitions:
        if isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)):
            directives_by_type_name.setdefault(get_ast_field_name(definition), []).extend(
                definition.directives or ()
            )

    errors = []
    for type_name, directives in directives_by_type_name.items():
        is_task_response = find_directive(TaskResponseDirective.name, directives)
        is_resolver = find_directive(ResolverDirective.name, directives)
        if is_task_response and is_resolver:
            errors.append(
                "Type {} may not be marked both @{} and @{}.".format(
                    type_name,
                    TaskResponseDirective.name,
                    ResolverDirective.name,
                )
            )
    return errors


def _check_task_fields(schema_metadata: SchemaMetadata) -> List[str]:
    errors = []
    for field in schema_metadata.mutations:
        if field.has_task_marker:
            errors.append(
                "@{} directive can only be used on Query fields, not Mutation fields. "
                "Found on Mutation field {}.".format(TaskDirective.name, field.name)
            )

    task_response_type_names = schema_metadata.task_response_type_names
    for field in schema_metadata.queries:
        if not field.has_task_marker or is_primitive_type_name(field.type_name):
            continue
        if field.type_name not in task_response_type_names:
            errors.append(
                '@{} directive on Query field "{}" requires its return type "{}" to have the '
                "@{} directive.".format(
                    TaskDirective.name, field.name, field.type_name, TaskResponseDirective.name
                )
            )
    return errors


def _check_resolver_types(schema_metadata: SchemaMetadata) -> List[str]:
    errors = []
    for type_metadata in schema_metadata.types:
        if not type_metadata.is_resolver:
            continue
        if not any(field.query_template is not None for field in type_metadata.fields):
            errors.append(
                "Resolver type {} must have at least one field with a @sql_query "
                "directive.".format(type_metadata.name)
            )
    return errors


def _check_join_table_references(schema_metadata: SchemaMetadata) -> List[str]:
    all_fields = list(schema_metadata.queries) + list(schema_metadata.mutations)
    for type_metadata in schema_metadata.types:
        all_fields.extend(type_metadata.fields)

    errors = []
    for field in all_fields:
        template = field.query_template
        if template is None:
            continue
        for match in JOIN_TABLE_MACRO_PATTERN.finditer(template):
            if not match.group(1).strip():
                errors.append(
                    "Invalid join table reference {} in the query of field {}.".format(
                        match.group(0), field.name
                    )
                )
    return errors


######
# Public API
######


def validate_schema(schema: Union[str, DocumentNode]) -> SchemaMetadata:
    """Ensure the schema is valid GraphQL that uses the supported directives correctly.

    Args:
        schema: GraphQL SDL string, or its already-parsed Document AST. The supported directives
                and the AWSDateTime scalar do not need to be declared in it.

    Returns:
        SchemaMetadata extracted from the validated schema

    Raises:
        SchemaParsingError: if the schema string is not syntactically valid GraphQL
        SchemaValidationError: if the schema is invalid, listing every problem found
    """
    document_ast = get_document_ast(schema)
    _build_graphql_schema(document_ast)

    schema_metadata = extract_schema_metadata(document_ast)
    errors = (
        _check_type_markers(document_ast)
        + _check_task_fields(schema_metadata)
        + _check_resolver_types(schema_metadata)
        + _check_join_table_references(schema_metadata)
    )
    if errors:
        raise SchemaValidationError("\n".join(errors))

    return schema_metadata
