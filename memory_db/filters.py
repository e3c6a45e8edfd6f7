"""
Memory filters and their compilation to Cosmos DB SQL.

A ``MemoryFilter`` is one conjunctive clause: every (key, value) pair must
hold. A list of filters is OR-ed. Keys prefixed with ``data.`` address a
column of the tabular row; any other key addresses a tag.

Compilation happens in two steps so the logic stays independent of the
query dialect:

    filters -> clause tree (OrClause / AndClause / predicates) -> SQL text

All literal values are bound as named parameters, never inlined.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .record_codec import DATA_FIELD, TAGS_FIELD
from .records import normalize_field_name

logger = logging.getLogger(__name__)

DATA_PREFIX = "data."
DEFAULT_ALIAS = "c"
PARAMETER_PREFIX = "@p_"


class MemoryFilter:
    """
    Ordered set of (key, value) pairs that must all match.

    Example:
        MemoryFilter().by_tag("env", "prod").by_field("Region", "East US")
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, Any]]] = None):
        self._pairs: List[Tuple[str, Any]] = []
        for key, value in pairs or []:
            self.add(key, value)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "MemoryFilter":
        """Build a filter from a mapping; list values add one pair per item."""
        memory_filter = cls()
        for key, value in values.items():
            if isinstance(value, (list, tuple, set)):
                for item in value:
                    memory_filter.add(key, item)
            else:
                memory_filter.add(key, value)
        return memory_filter

    def add(self, key: str, value: Any) -> "MemoryFilter":
        if (key, value) not in self._pairs:
            self._pairs.append((key, value))
        return self

    def by_tag(self, key: str, value: Any) -> "MemoryFilter":
        return self.add(key, value)

    def by_field(self, column: str, value: Any) -> "MemoryFilter":
        return self.add(f"{DATA_PREFIX}{column}", value)

    def pairs(self) -> List[Tuple[str, Any]]:
        return list(self._pairs)

    def is_empty(self) -> bool:
        return all(value is None for _, value in self._pairs)

    def to_dict(self) -> Dict[str, List[Any]]:
        result: Dict[str, List[Any]] = {}
        for key, value in self._pairs:
            result.setdefault(key, []).append(value)
        return result

    def __iter__(self) -> Iterator[Tuple[str, Any]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MemoryFilter):
            return NotImplemented
        return self._pairs == other._pairs

    def __repr__(self) -> str:
        return f"MemoryFilter({self._pairs!r})"


def is_data_key(key: str) -> bool:
    return key.startswith(DATA_PREFIX)


def quote_property(name: str) -> str:
    """Quote a property name for bracket notation: c.data["..."]."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


# Clause tree


@dataclass(frozen=True)
class TagContains:
    """The tag array under ``key`` contains the bound value."""
    key: str
    parameter: str

    def render(self, alias: str) -> str:
        return f"ARRAY_CONTAINS({alias}.{TAGS_FIELD}[{quote_property(self.key)}], {self.parameter})"


@dataclass(frozen=True)
class FieldEquals:
    """The row column ``column`` equals the bound value."""
    column: str
    parameter: str

    def render(self, alias: str) -> str:
        return f"{alias}.{DATA_FIELD}[{quote_property(self.column)}] = {self.parameter}"


Predicate = Union[TagContains, FieldEquals]


@dataclass(frozen=True)
class AndClause:
    predicates: Tuple[Predicate, ...]

    def render(self, alias: str) -> str:
        return " AND ".join(predicate.render(alias) for predicate in self.predicates)


@dataclass(frozen=True)
class OrClause:
    clauses: Tuple[AndClause, ...]

    def render(self, alias: str) -> str:
        # each conjunction is parenthesized so OR never binds tighter than AND
        return " OR ".join(f"({clause.render(alias)})" for clause in self.clauses)


@dataclass(frozen=True)
class CompiledFilter:
    """Compiled filter: optional clause tree plus its ordered parameters."""
    alias: str = DEFAULT_ALIAS
    clause: Optional[OrClause] = None
    parameters: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return self.clause is None

    @property
    def where_clause(self) -> str:
        """``WHERE ...`` fragment, or an empty string to match everything."""
        if self.clause is None:
            return ""
        return f"WHERE {self.clause.render(self.alias)}"

    def cosmos_parameters(self) -> List[Dict[str, Any]]:
        return [{"name": name, "value": value} for name, value in self.parameters]


class FilterCompiler:
    """
    Compiles memory filters into a parameterized Cosmos DB WHERE clause.

    The compiler is stateless; parameter numbering restarts on every call,
    so compiling the same filters twice gives identical output.
    """

    def __init__(self, normalize_field_names: bool = True):
        self.normalize_field_names = normalize_field_names

    def compile(
        self,
        alias: str = DEFAULT_ALIAS,
        filters: Optional[Sequence[MemoryFilter]] = None,
    ) -> CompiledFilter:
        """
        Compile a list of filters (OR of ANDs).

        Args:
            alias: Collection alias used in the query (``FROM c``)
            filters: Filters to compile; None or all-empty matches everything

        Returns:
            CompiledFilter with the clause tree and named parameters
        """
        if not filters or all(f.is_empty() for f in filters):
            return CompiledFilter(alias=alias)

        parameters: List[Tuple[str, Any]] = []
        clauses: List[AndClause] = []

        for memory_filter in filters:
            if memory_filter.is_empty():
                continue

            predicates: List[Predicate] = []
            for key, value in memory_filter:
                predicate = self._compile_pair(key, value, parameters)
                if predicate is not None:
                    predicates.append(predicate)

            # a clause whose pairs were all skipped contributes nothing
            if predicates:
                clauses.append(AndClause(tuple(predicates)))

        if not clauses:
            return CompiledFilter(alias=alias)

        return CompiledFilter(alias=alias, clause=OrClause(tuple(clauses)), parameters=tuple(parameters))

    def _compile_pair(
        self,
        key: str,
        value: Any,
        parameters: List[Tuple[str, Any]],
    ) -> Optional[Predicate]:
        if value is None:
            return None

        if is_data_key(key):
            column = key[len(DATA_PREFIX):]
            if not column:
                logger.warning(f"Invalid structured data filter key found: {key!r}")
                return None

            normalized = normalize_field_name(column) if self.normalize_field_names else column
            if normalized != column:
                logger.debug(f"Normalized field name: {key} -> {DATA_PREFIX}{normalized}")
            predicate: Predicate = FieldEquals(normalized, self._bind(value, parameters))
            return predicate

        if not key:
            logger.warning("Empty tag filter key found, skipping predicate")
            return None

        return TagContains(key, self._bind(value, parameters))

    @staticmethod
    def _bind(value: Any, parameters: List[Tuple[str, Any]]) -> str:
        name = f"{PARAMETER_PREFIX}{len(parameters)}"
        parameters.append((name, value))
        return name


def compile_filters(
    alias: str = DEFAULT_ALIAS,
    filters: Optional[Sequence[MemoryFilter]] = None,
) -> CompiledFilter:
    """Compile filters with the default compiler."""
    return FilterCompiler().compile(alias, filters)
