# Copyright 2024-present Kensho Technologies, LLC.
"""Discovery and resolution of $join_table(<name>) macros in query templates."""
import re
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, MutableSet, Optional, Set

from ..exceptions import CompileError


JOIN_TABLE_MACRO_PATTERN = re.compile(r"\$join_table\(([^)]*)\)")


def find_join_table_names(template: str, accumulator: Optional[MutableSet[str]] = None) -> Set[str]:
    """Add every logical join table name referenced in the template to the accumulator.

    Args:
        template: query template text, possibly containing $join_table(<name>) macros
        accumulator: set into which the discovered names are added. A new set is created
                     if none is provided.

    Returns:
        the accumulator, with all names referenced by the template added to it
    """
    if accumulator is None:
        accumulator = set()

    for match in JOIN_TABLE_MACRO_PATTERN.finditer(template):
        name = match.group(1).strip()
        if name:
            accumulator.add(name)

    return accumulator


def _identity_naming(logical_name: str) -> str:
    return logical_name


class JoinTableRegistry:
    """Read-only mapping from logical join table names to physical table identifiers."""

    __slots__ = ("_identifiers",)

    def __init__(self, identifiers: Mapping[str, str]) -> None:
        """Create a registry over a copy of the given logical name -> identifier mapping."""
        self._identifiers = MappingProxyType(dict(identifiers))

    @classmethod
    def from_names(
        cls,
        logical_names: Iterable[str],
        naming_func: Callable[[str], str] = _identity_naming,
    ) -> "JoinTableRegistry":
        """Build a registry by computing the physical identifier of each logical name."""
        return cls({name: naming_func(name) for name in logical_names})

    @classmethod
    def with_prefix(cls, logical_names: Iterable[str], table_prefix: str) -> "JoinTableRegistry":
        """Build a registry whose physical identifiers are the logical names with a prefix."""
        return cls.from_names(logical_names, lambda name: table_prefix + name)

    @property
    def identifiers(self) -> Mapping[str, str]:
        return self._identifiers

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._identifiers

    def __len__(self) -> int:
        return len(self._identifiers)

    def __repr__(self) -> str:
        return "JoinTableRegistry({})".format(dict(self._identifiers))

    def resolve(self, logical_name: str) -> str:
        """Return the physical identifier of the logical join table, or raise CompileError."""
        identifier = self._identifiers.get(logical_name)
        if identifier is None:
            raise CompileError(
                "Query template references join table {!r}, which is not a join table known "
                "to this schema. Known join tables: {}".format(
                    logical_name, sorted(self._identifiers)
                )
            )
        return identifier

    def expand_macros(self, template: str) -> str:
        """Return the template with every $join_table(<name>) macro replaced by its identifier."""

        def _replace(match: "re.Match[str]") -> str:
            return self.resolve(match.group(1).strip())

        return JOIN_TABLE_MACRO_PATTERN.sub(_replace, template)


EMPTY_JOIN_TABLE_REGISTRY = JoinTableRegistry({})
