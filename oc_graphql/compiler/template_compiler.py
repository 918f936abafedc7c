# Copyright 2024-present Kensho Technologies, LLC.
"""Compile query templates and runtime arguments into complete, safely parameterized queries."""
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from .common import CompilationResult, classify_query
from .join_tables import EMPTY_JOIN_TABLE_REGISTRY, JoinTableRegistry
from .representations import represent_argument_as_quoted_sql, represent_argument_as_sql


ARGS_PLACEHOLDER_PREFIX = "$args."
SOURCE_PLACEHOLDER_PREFIX = "$source."


def get_placeholders(argument_name: str) -> Tuple[str, str]:
    """Return the two placeholder forms under which an argument can appear in a template."""
    return ARGS_PLACEHOLDER_PREFIX + argument_name, SOURCE_PLACEHOLDER_PREFIX + argument_name


def _sanitize_arguments(arguments: Mapping[str, Any]) -> Dict[str, str]:
    """Return the literal to substitute for every placeholder of every argument.

    A placeholder immediately surrounded by single quotes in the template, as in
    "name = '$args.name'", is replaced together with its quotes, so the result is still a
    single literal.
    """
    literals_by_placeholder = {}
    for name, value in arguments.items():
        literal = represent_argument_as_sql(name, value)
        quoted_literal = represent_argument_as_quoted_sql(name, value)
        for placeholder in get_placeholders(name):
            literals_by_placeholder[placeholder] = literal
            literals_by_placeholder["'" + placeholder + "'"] = quoted_literal
    return literals_by_placeholder


def _substitute_arguments(template: str, literals_by_placeholder: Mapping[str, str]) -> str:
    """Replace every placeholder occurrence with its sanitized literal.

    All placeholders are replaced in a single left-to-right pass over the template, so text
    inside an already-substituted literal is never scanned for placeholders again.
    """
    if not literals_by_placeholder:
        return template

    # Longer placeholders go first, so "$args.id" can't match a prefix of "$args.identifier".
    alternatives = sorted(literals_by_placeholder, key=lambda key: (-len(key), key))
    pattern = re.compile("|".join(re.escape(placeholder) for placeholder in alternatives))

    return pattern.sub(lambda match: literals_by_placeholder[match.group(0)], template)


######
# Public API
######


def compile_template(
    template: str,
    arguments: Optional[Mapping[str, Any]] = None,
    join_tables: JoinTableRegistry = EMPTY_JOIN_TABLE_REGISTRY,
) -> CompilationResult:
    """Insert the arguments into the query template and resolve its join table macros.

    Every argument is encoded before any text is substituted, so an invalid argument never
    results in a partially-compiled query.

    Args:
        template: query template text, as given in a @sql_query directive
        arguments: dict, mapping argument name to its value. Both "$args.<name>" and
                   "$source.<name>" placeholders are replaced with the value's literal.
        join_tables: registry resolving "$join_table(<name>)" macros to physical identifiers

    Returns:
        CompilationResult with the complete query and its classification

    Raises:
        ValidationError: if an argument is a non-finite number
        UnsupportedTypeError: if an argument has a type that cannot be represented in SQL
        CompileError: if the template is not classifiable or references an unknown join table
    """
    classification = classify_query(template)
    literals_by_placeholder = _sanitize_arguments(arguments or {})

    # Macros are expanded before values are substituted, so argument text that happens to look
    # like a macro is never interpreted as one.
    query = join_tables.expand_macros(template)
    query = _substitute_arguments(query, literals_by_placeholder)

    return CompilationResult(query=query, classification=classification)


class TemplateCompiler:
    """Compiler bound to the join table registry of a single schema."""

    def __init__(self, join_tables: JoinTableRegistry = EMPTY_JOIN_TABLE_REGISTRY) -> None:
        self._join_tables = join_tables

    @property
    def join_tables(self) -> JoinTableRegistry:
        return self._join_tables

    def compile(
        self, template: str, arguments: Optional[Mapping[str, Any]] = None
    ) -> CompilationResult:
        """Compile the template with the given arguments. See compile_template for details."""
        return compile_template(template, arguments, self._join_tables)
