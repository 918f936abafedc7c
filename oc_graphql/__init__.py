# Copyright 2024-present Kensho Technologies, LLC.
"""Commonly-used functions and data types from this package."""
from typing import Any, Mapping, Optional

from .compiler import (  # noqa
    CompilationResult,
    JoinTableRegistry,
    QueryClassification,
    TemplateCompiler,
    classify_query,
    compile_template,
    find_join_table_names,
)
from .exceptions import (  # noqa
    CompileError,
    EngineError,
    NotFoundError,
    NotificationParsingError,
    OCGraphQLError,
    SchemaParsingError,
    SchemaValidationError,
    TaskConflictError,
    TaskStoreError,
    UnsupportedTypeError,
    ValidationError,
)
from .extraction import extract_schema_metadata  # noqa
from .metadata import (  # noqa
    DataAccess,
    FieldMetadata,
    NoDirective,
    Resolver,
    SchemaMetadata,
    TaskResponse,
    TypeMetadata,
)
from .schema import DIRECTIVES, DIRECTIVES_SDL  # noqa
from .schema.validation import validate_schema  # noqa
from .schema_compilation import CompiledOperation, CompiledSchema, compile_schema  # noqa
from .tasks import (  # noqa
    ExecutionEngine,
    InMemoryTaskStore,
    SQLAlchemyTaskStore,
    TaskStatus,
    TaskStatusReport,
    TaskTracker,
    TaskTrackingConfig,
)


__package_name__ = "oc-graphql"
__version__ = "1.0.0"


def compile_field_query(
    schema: str,
    parent_type_name: str,
    field_name: str,
    arguments: Optional[Mapping[str, Any]] = None,
    table_prefix: str = "",
) -> CompilationResult:
    """Compile the query of a single directive-bearing field of the schema.

    Args:
        schema: GraphQL SDL string describing the schema and its directives
        parent_type_name: name of the type declaring the field, e.g. "Query" or "Mutation", or
                          the root type's name given by the schema definition if it renames it
        field_name: name of the field whose @sql_query template to compile
        arguments: dict, mapping argument name to its value, for every argument the template
                   references
        table_prefix: prefix prepended to logical join table names to form their physical names

    Returns:
        CompilationResult object, containing:
            - query: string, the compiled query with every argument safely substituted
            - classification: QueryClassification of the query
    """
    compiled_schema = compile_schema(schema, table_prefix=table_prefix)
    return compiled_schema.compile_operation(parent_type_name, field_name, arguments)
