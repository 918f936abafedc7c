# Copyright 2024-present Kensho Technologies, LLC.
"""Safely represent runtime argument values as SQL literals."""
import decimal
import math
from numbers import Integral, Real
from typing import Any

from ..exceptions import UnsupportedTypeError, ValidationError


SQL_NULL_LITERAL = "NULL"
SQL_TRUE_LITERAL = "true"
SQL_FALSE_LITERAL = "false"


def represent_decimal_as_str(value: decimal.Decimal) -> str:
    """Represent a finite Decimal in plain positional notation, never in exponent notation."""
    if not value.is_finite():
        raise ValidationError(
            "Attempting to represent a non-finite number as a query literal: {}".format(value)
        )
    return "{:f}".format(value)


def represent_float_as_str(value: float) -> str:
    """Represent a finite float as the shortest decimal text that round-trips to the same float."""
    if not math.isfinite(value):
        raise ValidationError(
            "Attempting to represent a non-finite number as a query literal: {}".format(value)
        )

    # repr() produces the shortest round-tripping digits, but may use exponent notation
    # (e.g. 1e-05), which is then expanded by going through Decimal.
    return represent_decimal_as_str(decimal.Decimal(repr(value)))


def represent_string_as_sql(value: str) -> str:
    """Wrap the string in single quotes, doubling every embedded single quote.

    No other character is altered, so that LIKE wildcards and similar search syntax supplied
    by the caller keep their meaning for the query engine.
    """
    return "'" + value.replace("'", "''") + "'"


######
# Public API
######


def represent_argument_as_sql(name: str, value: Any) -> str:
    """Return a SQL literal safely representing the given argument value.

    Args:
        name: string, the name of the argument. It will be used to provide a more descriptive error
              message if an error is raised.
        value: the runtime value of the argument

    Returns:
        string, the SQL literal to substitute for every placeholder of the argument

    Raises:
        ValidationError: if the value is a non-finite number
        UnsupportedTypeError: if the value is of a type that has no SQL literal representation
    """
    if value is None:
        return SQL_NULL_LITERAL
    # Special case: in Python, isinstance(True, int) returns True.
    # Booleans must therefore be checked before integers.
    elif isinstance(value, bool):
        return SQL_TRUE_LITERAL if value else SQL_FALSE_LITERAL
    elif isinstance(value, str):
        return represent_string_as_sql(value)
    elif isinstance(value, decimal.Decimal):
        try:
            return represent_decimal_as_str(value)
        except ValidationError as e:
            raise ValidationError("Invalid value for argument {}: {}".format(name, e)) from e
    elif isinstance(value, Integral):
        return str(int(value))
    elif isinstance(value, Real):
        try:
            return represent_float_as_str(float(value))
        except ValidationError as e:
            raise ValidationError("Invalid value for argument {}: {}".format(name, e)) from e
    else:
        raise UnsupportedTypeError(
            "Invalid type for argument {}. Expected one of None, bool, int, float, Decimal or "
            "str. Got value {!r} of type {} instead.".format(name, value, type(value).__name__)
        )


def represent_argument_as_quoted_sql(name: str, value: Any) -> str:
    """Return a SQL literal for an argument whose placeholder the template wraps in quotes.

    The template's quotes are replaced along with the placeholder. Strings are represented as
    usual, null stays NULL, and any other value is represented as the string of its literal.

    Raises:
        ValidationError: if the value is a non-finite number
        UnsupportedTypeError: if the value is of a type that has no SQL literal representation
    """
    literal = represent_argument_as_sql(name, value)
    if value is None or isinstance(value, str):
        return literal
    return represent_string_as_sql(literal)
