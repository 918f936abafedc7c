# Copyright 2024-present Kensho Technologies, LLC.
"""Compile every directive-bearing field of a schema, all or nothing."""
from dataclasses import dataclass
import logging
from typing import Any, Iterable, Iterator, Mapping, Optional, Tuple, Union

from graphql.language.ast import DocumentNode

from .compiler.common import CompilationResult, QueryClassification, classify_query
from .compiler.join_tables import JoinTableRegistry
from .compiler.return_values import ResultShape, check_return_values, get_declared_result_shape
from .compiler.template_compiler import TemplateCompiler
from .exceptions import NotFoundError
from .extraction import extract_schema_metadata
from .metadata import FieldMetadata, SchemaMetadata
from .schema.validation import validate_schema


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledOperation:
    """The compile-time artifacts of one field carrying a @sql_query directive."""

    # Name of the type declaring the field: the root query or mutation type name as declared by
    # the schema, or an object type name.
    parent_type_name: str
    field: FieldMetadata

    # The template as written, and with its join table macros resolved. Argument placeholders
    # are only resolved at request time.
    template: str
    resolved_template: str

    classification: QueryClassification
    result_shape: ResultShape

    @property
    def field_name(self) -> str:
        return self.field.name

    @property
    def is_task(self) -> bool:
        return self.field.is_task


@dataclass(frozen=True)
class CompiledSchema:
    """Everything produced by compiling a schema, for use by request handlers and task tracking."""

    metadata: SchemaMetadata
    join_tables: JoinTableRegistry
    operations: Tuple[CompiledOperation, ...]

    @property
    def compiler(self) -> TemplateCompiler:
        return TemplateCompiler(self.join_tables)

    @property
    def join_table_names(self):
        return self.metadata.join_table_names

    @property
    def task_operations(self) -> Tuple[CompiledOperation, ...]:
        return tuple(operation for operation in self.operations if operation.is_task)

    def get_operation(self, parent_type_name: str, field_name: str) -> CompiledOperation:
        """Return the compiled operation of the given field, or raise NotFoundError."""
        for operation in self.operations:
            if (
                operation.parent_type_name == parent_type_name
                and operation.field_name == field_name
            ):
                return operation
        raise NotFoundError(
            "No field {}.{} with a @sql_query directive exists in the schema.".format(
                parent_type_name, field_name
            )
        )

    def get_task_operation(self, field_name: str) -> CompiledOperation:
        """Return the compiled operation of the given root query field, or raise NotFoundError."""
        for operation in self.task_operations:
            if operation.field_name == field_name:
                return operation
        raise NotFoundError(
            "No task operation named {} exists in the schema. Task operations: {}".format(
                field_name, sorted(operation.field_name for operation in self.task_operations)
            )
        )

    def compile_operation(
        self, parent_type_name: str, field_name: str, arguments: Optional[Mapping[str, Any]]
    ) -> CompilationResult:
        """Compile the field's template with the request's arguments into a complete query."""
        operation = self.get_operation(parent_type_name, field_name)
        return self.compiler.compile(operation.template, arguments)


def _iter_data_access_fields(
    schema_metadata: SchemaMetadata,
) -> Iterator[Tuple[str, FieldMetadata]]:
    """Yield (parent type name, field) for every field that has a query template."""
    root_fields: Iterable[Tuple[str, Iterable[FieldMetadata]]] = (
        (schema_metadata.query_type_name, schema_metadata.queries),
        (schema_metadata.mutation_type_name, schema_metadata.mutations),
    )
    for parent_type_name, fields in root_fields:
        for field in fields:
            if field.query_template is not None:
                yield parent_type_name, field

    for type_metadata in schema_metadata.types:
        for field in type_metadata.fields:
            if field.query_template is not None:
                yield type_metadata.name, field


def _compile_operation(
    schema_metadata: SchemaMetadata,
    join_tables: JoinTableRegistry,
    parent_type_name: str,
    field: FieldMetadata,
) -> CompiledOperation:
    template = field.query_template
    if template is None:
        raise AssertionError("Expected field {} to have a query template.".format(field.name))

    return CompiledOperation(
        parent_type_name=parent_type_name,
        field=field,
        template=template,
        resolved_template=join_tables.expand_macros(template),
        classification=classify_query(template),
        result_shape=get_declared_result_shape(field, schema_metadata),
    )


######
# Public API
######


def compile_schema(
    schema: Union[str, DocumentNode], table_prefix: str = "", validate: bool = True
) -> CompiledSchema:
    """Compile every field with a @sql_query directive in the schema.

    Compilation is all or nothing: if any single field fails to compile, no result is produced
    for the schema, so the resulting set of operations is always internally consistent.

    Args:
        schema: GraphQL SDL string, or its already-parsed Document AST
        table_prefix: prefix prepended to logical join table names to form their physical names
        validate: whether to validate the schema's directive usage before compiling it

    Returns:
        CompiledSchema with the schema's metadata, join tables and compiled operations

    Raises:
        SchemaParsingError: if the schema is not syntactically valid GraphQL
        SchemaValidationError: if validation is enabled and the schema is invalid
        CompileError: if any template or @return directive cannot be compiled
    """
    if validate:
        schema_metadata = validate_schema(schema)
    else:
        schema_metadata = extract_schema_metadata(schema)

    join_tables = JoinTableRegistry.with_prefix(schema_metadata.join_table_names, table_prefix)

    for type_metadata in schema_metadata.types:
        check_return_values(type_metadata)

    operations = tuple(
        _compile_operation(schema_metadata, join_tables, parent_type_name, field)
        for parent_type_name, field in _iter_data_access_fields(schema_metadata)
    )

    logger.info(
        "Compiled %(num_operations)d operations (%(num_tasks)d tasks) referencing "
        "%(num_join_tables)d join tables.",
        {
            "num_operations": len(operations),
            "num_tasks": sum(1 for operation in operations if operation.is_task),
            "num_join_tables": len(join_tables),
        },
    )
    return CompiledSchema(
        metadata=schema_metadata, join_tables=join_tables, operations=operations
    )
