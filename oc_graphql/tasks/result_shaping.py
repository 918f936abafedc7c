# Copyright 2024-present Kensho Technologies, LLC.
"""Shaping of the rows returned by the execution engine into records of a response type."""
from datetime import date, datetime, time
import decimal
from numbers import Integral, Real
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..compiler.representations import SQL_FALSE_LITERAL, SQL_TRUE_LITERAL
from ..exceptions import EngineError
from ..metadata import TypeMetadata
from .engine import ResultRow


def _coerce_boolean(value: str) -> bool:
    normalized_value = value.strip().lower()
    if normalized_value in ("true", "1", "t", "yes"):
        return True
    elif normalized_value in ("false", "0", "f", "no"):
        return False
    else:
        raise ValueError("Cannot interpret {!r} as a boolean.".format(value))


_SCALAR_COERCIONS: Dict[str, Callable[[str], Any]] = {
    "Int": int,
    "Float": float,
    "Boolean": _coerce_boolean,
}

# Coercions of cells the engine already returned as typed values rather than as text.
_TYPED_VALUE_COERCIONS: Dict[str, Callable[[Any], Any]] = {
    "Int": int,
    "Float": float,
    "Boolean": bool,
}


def _represent_decimal_as_json(value: decimal.Decimal) -> Any:
    """Return the Decimal as an int or float if that is exact, and as its text otherwise."""
    if not value.is_finite():
        return str(value)
    if value == value.to_integral_value():
        return int(value)
    as_float = float(value)
    if decimal.Decimal(repr(as_float)) == value:
        return as_float
    return "{:f}".format(value)


def _represent_value_as_text(value: Any) -> str:
    # Special case: in Python, isinstance(True, int) returns True.
    if isinstance(value, bool):
        return SQL_TRUE_LITERAL if value else SQL_FALSE_LITERAL
    elif isinstance(value, decimal.Decimal) and value.is_finite():
        return "{:f}".format(value)
    elif isinstance(value, (datetime, date, time)):
        return value.isoformat()
    else:
        return str(value)


def _coerce_value(value: Any, type_name: Optional[str]) -> Any:
    """Coerce a single cell to the declared scalar type. Empty cells become None."""
    if value is None or value == "":
        return None

    if type_name is None:
        return make_json_safe(value)

    if isinstance(value, str):
        return _SCALAR_COERCIONS.get(type_name, str)(value)

    coercion = _TYPED_VALUE_COERCIONS.get(type_name)
    if coercion is not None:
        return coercion(value)
    return _represent_value_as_text(value)


def _rows_as_mappings(rows: Sequence[ResultRow]) -> List[Mapping[str, Any]]:
    if not rows:
        return []

    if all(isinstance(row, Mapping) for row in rows):
        return list(rows)  # type: ignore
    if any(isinstance(row, Mapping) for row in rows):
        raise EngineError("Result rows mix keyed records and sequences of cell values.")

    header, data_rows = rows[0], rows[1:]
    column_names = [str(column_name) for column_name in header]
    records = []
    for row_index, row in enumerate(data_rows):
        if len(row) != len(column_names):
            raise EngineError(
                "Result row {} has {} cells, but the header names {} columns.".format(
                    row_index, len(row), len(column_names)
                )
            )
        records.append(dict(zip(column_names, row)))
    return records


######
# Public API
######


def make_json_safe(value: Any) -> Any:
    """Return the value converted to types that JSON can represent.

    Strings, booleans and None are unchanged. Other integral and real numbers become int and
    float, Decimals become int or float when that is exact and their plain decimal text
    otherwise, dates and times become ISO 8601 text, mappings and sequences are converted
    element-wise, and anything else becomes its str().
    """
    if value is None or isinstance(value, (str, bool)):
        return value
    elif isinstance(value, decimal.Decimal):
        return _represent_decimal_as_json(value)
    elif isinstance(value, Integral):
        return int(value)
    elif isinstance(value, Real):
        return float(value)
    elif isinstance(value, (datetime, date, time)):
        return value.isoformat()
    elif isinstance(value, Mapping):
        return {str(key): make_json_safe(item) for key, item in value.items()}
    elif isinstance(value, (list, tuple)):
        return [make_json_safe(item) for item in value]
    else:
        return str(value)


def shape_rows(
    rows: Sequence[ResultRow], response_type: Optional[TypeMetadata] = None
) -> List[Dict[str, Any]]:
    """Convert the engine's result rows to records shaped like the response type.

    Every value of the returned records can be represented in JSON, so the records can be
    stored with the task as they are.

    Args:
        rows: either a header row followed by rows of cell values, or keyed records
        response_type: the type the records should match. When given, only the columns
                       declared as fields of the type are kept, and cells are coerced
                       according to the declared scalar types. Non-numeric, non-boolean fields
                       receive text. When None, every column is kept and only converted to
                       JSON-compatible values.

    Returns:
        list of records, in the order the engine returned the rows

    Raises:
        EngineError: if the rows are malformed
        ValueError: if a cell cannot be coerced to the declared type of its column
        TypeError: if a typed cell cannot be coerced to the declared type of its column
    """
    records = _rows_as_mappings(rows)

    if response_type is None:
        return [
            {str(column_name): _coerce_value(value, None) for column_name, value in record.items()}
            for record in records
        ]

    field_types = {field.name: field.type_name for field in response_type.fields}
    return [
        {
            column_name: _coerce_value(value, field_types[column_name])
            for column_name, value in record.items()
            if column_name in field_types
        }
        for record in records
    ]
