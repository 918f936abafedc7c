# Copyright 2024-present Kensho Technologies, LLC.
from collections import OrderedDict
from typing import FrozenSet

from graphql import (
    DirectiveLocation,
    GraphQLArgument,
    GraphQLDirective,
    GraphQLNonNull,
    GraphQLString,
)
from graphql.utilities.print_schema import print_directive


# Constraints:
# - can only be applied to field definitions;
# - 'query' is a SQL template whose leading keyword is one of SELECT, INSERT, UPDATE, DELETE
#   (or WITH, which is treated as a SELECT);
# - within 'query', '$args.<name>' and '$source.<name>' are replaced by safely-encoded values
#   of the field's arguments (respectively the parent object's fields) at request time, and
#   '$join_table(<name>)' is replaced by the physical identifier of a many-to-many linking table.
SqlQueryDirective = GraphQLDirective(
    name="sql_query",
    args=OrderedDict(
        [
            (
                "query",
                GraphQLArgument(
                    type_=GraphQLNonNull(GraphQLString),
                    description="SQL template executed to resolve the field.",
                ),
            ),
        ]
    ),
    locations=[
        DirectiveLocation.FIELD_DEFINITION,
    ],
)


# Constraints:
# - can only be applied to object types;
# - a type may not be marked both @task_response and @resolver;
# - types marked @task_response are never given generated create/read/update/delete operations.
TaskResponseDirective = GraphQLDirective(
    name="task_response",
    locations=[
        DirectiveLocation.OBJECT,
    ],
)


# Constraints:
# - can only be applied to object types;
# - the type must have at least one field carrying a @sql_query directive.
ResolverDirective = GraphQLDirective(
    name="resolver",
    locations=[
        DirectiveLocation.OBJECT,
    ],
)


# Every field of the Query root type is tracked as an asynchronous task, whether or not it
# carries this directive. Its presence is informational only, but it is still only allowed on
# Query fields, and it requires the field's return type to be marked @task_response.
TaskDirective = GraphQLDirective(
    name="task",
    locations=[
        DirectiveLocation.FIELD_DEFINITION,
    ],
)


# Constraints:
# - 'value' must be of the form '$args.<name>' or '$source.<name>';
# - the field's value in responses is the named argument (or source value) of the request.
ReturnDirective = GraphQLDirective(
    name="return",
    args=OrderedDict(
        [
            (
                "value",
                GraphQLArgument(
                    type_=GraphQLNonNull(GraphQLString),
                    description="Argument or source reference providing the field's value.",
                ),
            ),
        ]
    ),
    locations=[
        DirectiveLocation.FIELD_DEFINITION,
    ],
)


DIRECTIVES = (
    SqlQueryDirective,
    TaskResponseDirective,
    ResolverDirective,
    TaskDirective,
    ReturnDirective,
)

# SDL text declaring every directive above, suitable for prepending to a user schema.
DIRECTIVES_SDL = "\n".join(print_directive(directive) for directive in DIRECTIVES)

DEFAULT_QUERY_TYPE_NAME = "Query"
DEFAULT_MUTATION_TYPE_NAME = "Mutation"

# AppSync provides this scalar implicitly, so user schemas reference it without declaring it.
AWS_DATETIME_TYPE_NAME = "AWSDateTime"

PRIMITIVE_TYPE_NAMES: FrozenSet[str] = frozenset(
    {"String", "Int", "Float", "Boolean", "ID", AWS_DATETIME_TYPE_NAME}
)


def is_primitive_type_name(type_name: str) -> bool:
    """Return True if the type name refers to one of the built-in scalar types."""
    return type_name in PRIMITIVE_TYPE_NAMES
