# Copyright 2024-present Kensho Technologies, LLC.
"""Result shapes of data access fields, and values declared through the @return directive."""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from ..exceptions import CompileError
from ..metadata import FieldMetadata, SchemaMetadata, TypeMetadata
from .common import QueryClassification
from .template_compiler import ARGS_PLACEHOLDER_PREFIX, SOURCE_PLACEHOLDER_PREFIX


@dataclass(frozen=True)
class ResultShape:
    """The structure a caller should expect as the result of a data access field."""

    type_name: str
    is_list: bool

    # Whether the result is populated from the rows produced by the query. When False,
    # every value of the result is declared through @return directives instead.
    expects_rows: bool


def parse_return_value(return_value: str) -> Tuple[str, str]:
    """Split a @return value into its ("args" or "source", name) parts, or raise CompileError."""
    for prefix, origin in (
        (ARGS_PLACEHOLDER_PREFIX, "args"),
        (SOURCE_PLACEHOLDER_PREFIX, "source"),
    ):
        if return_value.startswith(prefix):
            name = return_value[len(prefix) :]
            if name.isidentifier():
                return origin, name

    raise CompileError(
        "Invalid @return value {!r}: expected it to be of the form '{}<name>' or "
        "'{}<name>'.".format(return_value, ARGS_PLACEHOLDER_PREFIX, SOURCE_PLACEHOLDER_PREFIX)
    )


def check_return_values(type_metadata: TypeMetadata) -> None:
    """Ensure every @return value on the type's fields is well-formed, or raise CompileError."""
    for field in type_metadata.fields:
        if field.return_value is not None:
            try:
                parse_return_value(field.return_value)
            except CompileError as e:
                raise CompileError(
                    "Field {} of type {}: {}".format(field.name, type_metadata.name, e)
                ) from e


def resolve_return_values(
    type_metadata: TypeMetadata,
    arguments: Optional[Mapping[str, Any]] = None,
    source: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Return the values of the type's @return fields for a request with the given inputs.

    Args:
        type_metadata: the response type whose fields may carry @return directives
        arguments: the arguments of the request, referenced as "$args.<name>"
        source: the parent object's values, referenced as "$source.<name>"

    Returns:
        dict, field name -> value, for every field of the type that carries @return.
        Values for names that were not provided are None.
    """
    inputs = {"args": arguments or {}, "source": source or {}}

    resolved = {}
    for field in type_metadata.fields:
        if field.return_value is None:
            continue
        origin, name = parse_return_value(field.return_value)
        resolved[field.name] = inputs[origin].get(name)
    return resolved


def get_declared_result_shape(
    field: FieldMetadata, schema_metadata: SchemaMetadata
) -> ResultShape:
    """Return the result shape the schema author declared through the field's type."""
    response_type = schema_metadata.get_type(field.type_name)
    fully_declared = (
        response_type is not None
        and bool(response_type.fields)
        and all(response_field.return_value is not None for response_field in response_type.fields)
    )
    return ResultShape(
        type_name=field.type_name, is_list=field.is_list, expects_rows=not fully_declared
    )


def infer_result_shape(
    field: FieldMetadata, classification: QueryClassification
) -> ResultShape:
    """Best-effort normalization: guess the field's result shape from its query classification.

    Only useful for fields whose type does not describe the result. INSERT, UPDATE and DELETE
    queries conventionally produce no rows, so their results are never populated from rows.
    Prefer get_declared_result_shape wherever the schema declares the result.
    """
    return ResultShape(
        type_name=field.type_name, is_list=field.is_list, expects_rows=classification.yields_rows
    )
