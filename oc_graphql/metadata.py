# Copyright 2024-present Kensho Technologies, LLC.
"""Structural metadata produced by a single directive extraction pass over a schema."""
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple, Union

import funcy


@dataclass(frozen=True)
class NoDirective:
    """The type or field carries none of the directives that select generated behavior."""


@dataclass(frozen=True)
class DataAccess:
    """The field carries a @sql_query directive with the given query template."""

    template: str


@dataclass(frozen=True)
class TaskResponse:
    """The type carries the @task_response marker directive."""


@dataclass(frozen=True)
class Resolver:
    """The type carries the @resolver marker directive."""


FieldDirective = Union[NoDirective, DataAccess]
TypeDirective = Union[NoDirective, TaskResponse, Resolver]


@dataclass(frozen=True)
class ArgumentMetadata:
    """A field argument, in declaration order."""

    name: str
    type_name: str
    is_required: bool
    is_list: bool


@dataclass(frozen=True)
class FieldMetadata:
    """A field of an object type or of one of the root operation types."""

    name: str
    type_name: str
    is_required: bool
    is_list: bool

    # None when the field declares no arguments at all.
    arguments: Optional[Tuple[ArgumentMetadata, ...]] = None
    directive: FieldDirective = NoDirective()

    # True exactly for fields of the root query type.
    is_task: bool = False

    # Raw value of the field's @return directive, e.g. "$args.limit".
    return_value: Optional[str] = None

    # Whether the field carried an explicit @task marker. Informational only.
    has_task_marker: bool = False

    @property
    def query_template(self) -> Optional[str]:
        """Return the field's query template, or None if it has no data-access directive."""
        directive = self.directive
        if isinstance(directive, DataAccess):
            return directive.template
        elif isinstance(directive, NoDirective):
            return None
        else:
            raise AssertionError(
                "Unreachable code reached: unexpected field directive {} on field {}".format(
                    directive, self.name
                )
            )


@dataclass(frozen=True)
class TypeMetadata:
    """An object type other than the root operation types."""

    name: str
    fields: Tuple[FieldMetadata, ...]
    directive: TypeDirective = NoDirective()
    is_primitive: bool = False

    def __post_init__(self) -> None:
        """Validate fields."""
        if not isinstance(self.directive, (NoDirective, TaskResponse, Resolver)):
            raise AssertionError(
                "Unexpected type directive {} on type {}".format(self.directive, self.name)
            )

    @property
    def is_resolver(self) -> bool:
        """Return True if the type is marked @resolver."""
        return isinstance(self.directive, Resolver)

    @property
    def is_task_response(self) -> bool:
        """Return True if the type is marked @task_response."""
        return isinstance(self.directive, TaskResponse)

    @property
    def generates_crud(self) -> bool:
        """Return True if default create/read/update/delete operations apply to this type."""
        return not (self.is_primitive or self.is_resolver or self.is_task_response)

    def get_field(self, field_name: str) -> Optional[FieldMetadata]:
        """Return the field with the given name, or None if the type has no such field."""
        return funcy.first(field for field in self.fields if field.name == field_name)


@dataclass(frozen=True)
class SchemaMetadata:
    """Immutable result of one extraction pass over a schema."""

    types: Tuple[TypeMetadata, ...]
    queries: Tuple[FieldMetadata, ...]
    mutations: Tuple[FieldMetadata, ...]
    enums: Tuple[str, ...]
    join_table_names: FrozenSet[str]

    # Names of the root operation types, "Query" and "Mutation" unless the schema definition
    # renames them.
    query_type_name: str
    mutation_type_name: str

    def get_type(self, type_name: str) -> Optional[TypeMetadata]:
        """Return the object type with the given name, or None if there is no such type."""
        return funcy.first(type_ for type_ in self.types if type_.name == type_name)

    def get_query(self, field_name: str) -> Optional[FieldMetadata]:
        """Return the root query field with the given name, or None."""
        return funcy.first(field for field in self.queries if field.name == field_name)

    def get_mutation(self, field_name: str) -> Optional[FieldMetadata]:
        """Return the root mutation field with the given name, or None."""
        return funcy.first(field for field in self.mutations if field.name == field_name)

    @property
    def task_fields(self) -> Tuple[FieldMetadata, ...]:
        return tuple(field for field in self.queries if field.is_task)

    @property
    def task_response_type_names(self) -> FrozenSet[str]:
        return frozenset(type_.name for type_ in self.types if type_.is_task_response)
