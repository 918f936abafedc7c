# Copyright 2024-present Kensho Technologies, LLC.
from collections import namedtuple
from enum import Enum, unique
import re

from ..exceptions import CompileError


@unique
class QueryClassification(Enum):
    """The kind of data access a query template performs."""

    READ = "Read"
    INSERT = "Insert"
    UPDATE = "Update"
    DELETE = "Delete"

    @property
    def yields_rows(self) -> bool:
        """Return True if queries of this kind conventionally produce a row payload."""
        return self is QueryClassification.READ


# The CompilationResult will have the following types for its members:
# - query: string, the query with every argument placeholder and join table macro resolved
# - classification: QueryClassification, the kind of data access the query performs
CompilationResult = namedtuple("CompilationResult", ("query", "classification"))


_LEADING_KEYWORD_CLASSIFICATIONS = {
    "SELECT": QueryClassification.READ,
    # Common table expressions are only supported in front of SELECT queries.
    "WITH": QueryClassification.READ,
    "INSERT": QueryClassification.INSERT,
    "UPDATE": QueryClassification.UPDATE,
    "DELETE": QueryClassification.DELETE,
}

_LEADING_COMMENT_PATTERN = re.compile(r"\A(?:\s*--[^\n]*(?:\n|\Z))+")
_LEADING_KEYWORD_PATTERN = re.compile(r"\A\s*\(*\s*([A-Za-z]+)")


def classify_query(template: str) -> QueryClassification:
    """Classify the query template by its leading SQL keyword, ignoring case and whitespace."""
    without_comments = _LEADING_COMMENT_PATTERN.sub("", template)
    match = _LEADING_KEYWORD_PATTERN.match(without_comments)
    keyword = match.group(1).upper() if match else None

    classification = _LEADING_KEYWORD_CLASSIFICATIONS.get(keyword) if keyword else None
    if classification is None:
        raise CompileError(
            "Could not classify query template: expected it to start with one of "
            "{}, but it starts with {!r}. Template: {}".format(
                sorted(_LEADING_KEYWORD_CLASSIFICATIONS), keyword, template
            )
        )
    return classification
