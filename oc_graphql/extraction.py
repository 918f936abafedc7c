# Copyright 2024-present Kensho Technologies, LLC.
"""Extract structural metadata from a directive-annotated GraphQL schema."""
from collections import OrderedDict
import logging
from typing import Dict, List, MutableSet, Optional, Sequence, Set, Tuple, Union

from graphql.language.ast import (
    DirectiveNode,
    DocumentNode,
    EnumTypeDefinitionNode,
    EnumTypeExtensionNode,
    FieldDefinitionNode,
    InputValueDefinitionNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    OperationType,
    SchemaDefinitionNode,
)

from .ast_manipulation import (
    describe_type_node,
    find_directive,
    get_ast_field_name,
    get_document_ast,
    get_string_argument_value,
)
from .compiler.join_tables import find_join_table_names
from .metadata import (
    ArgumentMetadata,
    DataAccess,
    FieldDirective,
    FieldMetadata,
    NoDirective,
    Resolver,
    SchemaMetadata,
    TaskResponse,
    TypeDirective,
    TypeMetadata,
)
from .schema import (
    DEFAULT_MUTATION_TYPE_NAME,
    DEFAULT_QUERY_TYPE_NAME,
    ResolverDirective,
    ReturnDirective,
    SqlQueryDirective,
    TaskDirective,
    TaskResponseDirective,
    is_primitive_type_name,
)


logger = logging.getLogger(__name__)


def _get_root_type_names(document_ast: DocumentNode) -> Tuple[str, str]:
    """Return the (query, mutation) root type names, honoring an explicit schema definition."""
    query_type_name = DEFAULT_QUERY_TYPE_NAME
    mutation_type_name = DEFAULT_MUTATION_TYPE_NAME

    for definition in document_ast.definitions:
        if isinstance(definition, SchemaDefinitionNode):
            for operation_type_definition in definition.operation_types:
                type_name = operation_type_definition.type.name.value
                if operation_type_definition.operation == OperationType.QUERY:
                    query_type_name = type_name
                elif operation_type_definition.operation == OperationType.MUTATION:
                    mutation_type_name = type_name

    return query_type_name, mutation_type_name


def _extract_field_directive(
    directives: Optional[Sequence[DirectiveNode]], join_table_accumulator: MutableSet[str]
) -> FieldDirective:
    """Return the field's data access directive, registering any join tables it references."""
    directive = find_directive(SqlQueryDirective.name, directives)
    if directive is None:
        return NoDirective()

    template = get_string_argument_value(directive, "query")
    if template is None:
        # The compiler will complain about the field if it is ever compiled, extraction does not.
        logger.warning(
            "Ignoring @%(directive)s directive without a string-valued query argument.",
            {"directive": SqlQueryDirective.name},
        )
        return NoDirective()

    find_join_table_names(template, join_table_accumulator)
    return DataAccess(template)


def _extract_type_directive(
    type_name: str, directives: Sequence[DirectiveNode]
) -> TypeDirective:
    """Return the type-level marker directive, given the directives of all of the type's parts."""
    is_task_response = find_directive(TaskResponseDirective.name, directives) is not None
    is_resolver = find_directive(ResolverDirective.name, directives) is not None

    if is_task_response:
        if is_resolver:
            logger.warning(
                "Type %(type_name)s is marked both @%(task_response)s and @%(resolver)s. "
                "Treating it as a task response type only.",
                {
                    "type_name": type_name,
                    "task_response": TaskResponseDirective.name,
                    "resolver": ResolverDirective.name,
                },
            )
        return TaskResponse()
    elif is_resolver:
        return Resolver()
    else:
        return NoDirective()


def _extract_arguments(
    argument_asts: Optional[Sequence[InputValueDefinitionNode]],
) -> Optional[Tuple[ArgumentMetadata, ...]]:
    """Return the field's arguments in declaration order, or None if it declares none."""
    if not argument_asts:
        return None

    arguments = []
    for argument_ast in argument_asts:
        type_name, is_required, is_list = describe_type_node(argument_ast.type)
        arguments.append(
            ArgumentMetadata(
                name=get_ast_field_name(argument_ast),
                type_name=type_name,
                is_required=is_required,
                is_list=is_list,
            )
        )
    return tuple(arguments)


def _extract_field(
    field_ast: FieldDefinitionNode, is_task: bool, join_table_accumulator: MutableSet[str]
) -> FieldMetadata:
    type_name, is_required, is_list = describe_type_node(field_ast.type)

    return_directive = find_directive(ReturnDirective.name, field_ast.directives)
    return_value = (
        get_string_argument_value(return_directive) if return_directive is not None else None
    )

    return FieldMetadata(
        name=get_ast_field_name(field_ast),
        type_name=type_name,
        is_required=is_required,
        is_list=is_list,
        arguments=_extract_arguments(field_ast.arguments),
        directive=_extract_field_directive(field_ast.directives, join_table_accumulator),
        is_task=is_task,
        return_value=return_value,
        has_task_marker=find_directive(TaskDirective.name, field_ast.directives) is not None,
    )


def _extract_fields(
    field_asts: Optional[Sequence[FieldDefinitionNode]],
    is_task: bool,
    join_table_accumulator: MutableSet[str],
) -> List[FieldMetadata]:
    return [
        _extract_field(field_ast, is_task, join_table_accumulator)
        for field_ast in field_asts or ()
    ]


######
# Public API
######


def extract_schema_metadata(
    schema: Union[str, DocumentNode], join_table_accumulator: Optional[MutableSet[str]] = None
) -> SchemaMetadata:
    """Walk the schema's type definitions and extract their structural metadata.

    Fields of the root query type are always tasks, whether or not they carry @task.
    Object type extensions are merged into the type they extend, fields and markers alike.

    Args:
        schema: GraphQL SDL string, or its already-parsed Document AST
        join_table_accumulator: optional set into which every join table name referenced by any
                                query template is added. The names are also available on the
                                returned metadata, regardless of whether an accumulator is given.

    Returns:
        SchemaMetadata describing the schema's types, root fields, enums and join tables

    Raises:
        SchemaParsingError: if the schema string is not syntactically valid GraphQL
    """
    document_ast = get_document_ast(schema)
    if join_table_accumulator is None:
        join_table_accumulator = set()
    join_table_names: Set[str] = set()

    query_type_name, mutation_type_name = _get_root_type_names(document_ast)

    queries: List[FieldMetadata] = []
    mutations: List[FieldMetadata] = []
    enums: List[str] = []
    type_directive_asts: Dict[str, List[DirectiveNode]] = OrderedDict()
    type_fields: Dict[str, List[FieldMetadata]] = OrderedDict()

    for definition in document_ast.definitions:
        if isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)):
            type_name = get_ast_field_name(definition)
            if type_name == query_type_name:
                queries.extend(_extract_fields(definition.fields, True, join_table_names))
            elif type_name == mutation_type_name:
                mutations.extend(_extract_fields(definition.fields, False, join_table_names))
            else:
                type_fields.setdefault(type_name, []).extend(
                    _extract_fields(definition.fields, False, join_table_names)
                )
                type_directive_asts.setdefault(type_name, []).extend(definition.directives or ())
        elif isinstance(definition, (EnumTypeDefinitionNode, EnumTypeExtensionNode)):
            enum_name = get_ast_field_name(definition)
            if enum_name not in enums:
                enums.append(enum_name)

    types = tuple(
        TypeMetadata(
            name=type_name,
            fields=tuple(fields),
            directive=_extract_type_directive(type_name, type_directive_asts[type_name]),
            is_primitive=is_primitive_type_name(type_name),
        )
        for type_name, fields in type_fields.items()
    )

    join_table_accumulator.update(join_table_names)
    return SchemaMetadata(
        types=types,
        queries=tuple(queries),
        mutations=tuple(mutations),
        enums=tuple(enums),
        join_table_names=frozenset(join_table_names),
        query_type_name=query_type_name,
        mutation_type_name=mutation_type_name,
    )
