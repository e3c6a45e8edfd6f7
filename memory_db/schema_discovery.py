"""
Field discovery for tabular indexes.

Answers two questions used to ground free-text filter guesses:
- which tag keys and row columns exist in an index (from a bounded sample)
- which values are most frequent for one of those fields
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .filters import DEFAULT_ALIAS, quote_property
from .record_codec import DATA_FIELD, TAGS_FIELD

logger = logging.getLogger(__name__)

DISCOVERY_SAMPLE_SIZE = 100
DEFAULT_TOP_VALUES_LIMIT = 10

TopValues = List[Tuple[str, int]]


class FieldType(str, Enum):
    TAG = "tag"
    DATA = "data"

    @classmethod
    def parse(cls, value: str) -> "FieldType":
        """'tag'/'tags' select tags; anything else is a row column."""
        if value and value.strip().lower() in ("tag", "tags"):
            return cls.TAG
        return cls.DATA


@dataclass
class FieldCatalog:
    """
    Known tag keys and row columns of an index.

    Built from a sample, so an empty catalog means "no information", not
    "no such field".
    """
    tags: Set[str] = field(default_factory=set)
    data: Set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not self.tags and not self.data

    def find(self, field_type: FieldType, name: str) -> Optional[str]:
        """Return the catalog spelling of ``name`` (case-insensitive), if known."""
        names = self.tags if field_type == FieldType.TAG else self.data
        lowered = name.lower()
        for known in names:
            if known.lower() == lowered:
                return known
        return None

    def to_dict(self) -> Dict[str, List[str]]:
        return {"tags": sorted(self.tags), "data": sorted(self.data)}


class FieldDiscovery(Protocol):
    """Capability consumed by the grounding agent."""

    async def discover_fields(self, index: str) -> FieldCatalog:
        ...

    async def get_top_values(
        self,
        index: str,
        field_type: FieldType,
        field_name: str,
        limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ) -> TopValues:
        ...


def _add_case_insensitive(target: Dict[str, str], names: Iterable[str]) -> None:
    for name in names:
        target.setdefault(name.lower(), name)


def _mapping_keys(item: Dict[str, Any], key: str) -> Iterable[str]:
    value = item.get(key)
    if value is None:
        return []
    if not isinstance(value, dict):
        logger.debug(f"Ignoring non-object '{key}' in document {item.get('id')}: {type(value).__name__}")
        return []
    return value.keys()


def format_field_value(value: Any) -> str:
    """Render a grouped value the way it is shown to the LLM and used in filters."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, default=str)


def build_discovery_query(sample_size: int = DISCOVERY_SAMPLE_SIZE) -> Tuple[str, List[Dict[str, Any]]]:
    alias = DEFAULT_ALIAS
    sql = f"SELECT TOP @sample {alias}.{TAGS_FIELD}, {alias}.{DATA_FIELD} FROM {alias}"
    return sql, [{"name": "@sample", "value": sample_size}]


def build_top_values_query(field_type: FieldType, field_name: str) -> str:
    """
    GROUP BY query counting the values of one field.

    Tag values are arrays, so they are unnested with a JOIN and every tag
    value is counted on its own. Ordering and truncation happen client side
    because cross-partition GROUP BY queries do not support ORDER BY.
    """
    alias = DEFAULT_ALIAS
    if field_type == FieldType.TAG:
        path = f"{alias}.{TAGS_FIELD}[{quote_property(field_name)}]"
        return (
            f"SELECT t AS fieldValue, COUNT(1) AS occurrences "
            f"FROM {alias} JOIN t IN {path} "
            f"GROUP BY t"
        )

    path = f"{alias}.{DATA_FIELD}[{quote_property(field_name)}]"
    return (
        f"SELECT {path} AS fieldValue, COUNT(1) AS occurrences "
        f"FROM {alias} "
        f"WHERE IS_DEFINED({path}) "
        f"GROUP BY {path}"
    )


def rank_top_values(rows: Iterable[Dict[str, Any]], limit: int) -> TopValues:
    counts: Dict[str, int] = {}
    for row in rows:
        if "fieldValue" not in row:
            continue
        value = format_field_value(row["fieldValue"])
        counts[value] = counts.get(value, 0) + int(row.get("occurrences", 0))

    # stable sort keeps first-seen order for equal counts
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked[:max(limit, 0)]


class CosmosSchemaDiscovery:
    """FieldDiscovery implementation over a Cosmos DB database."""

    def __init__(self, database, sample_size: int = DISCOVERY_SAMPLE_SIZE):
        """
        Args:
            database: azure.cosmos.aio DatabaseProxy holding one container per index
            sample_size: Number of documents sampled by discover_fields
        """
        self.database = database
        self.sample_size = sample_size

    async def discover_fields(self, index: str) -> FieldCatalog:
        tags: Dict[str, str] = {}
        data: Dict[str, str] = {}
        sql, parameters = build_discovery_query(self.sample_size)

        try:
            container = self.database.get_container_client(index)
            async for item in container.query_items(query=sql, parameters=parameters):
                _add_case_insensitive(tags, _mapping_keys(item, TAGS_FIELD))
                _add_case_insensitive(data, _mapping_keys(item, DATA_FIELD))
        except Exception as e:
            logger.error(f"Error getting filterable fields from index {index}: {str(e)}")
            return FieldCatalog()

        catalog = FieldCatalog(tags=set(tags.values()), data=set(data.values()))
        logger.debug(f"Discovered {len(catalog.tags)} tag keys and {len(catalog.data)} data fields in {index}")
        return catalog

    async def get_top_values(
        self,
        index: str,
        field_type: FieldType,
        field_name: str,
        limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ) -> TopValues:
        """
        Most frequent values of a field over the whole index.

        Args:
            index: Index (container) name
            field_type: FieldType.TAG or FieldType.DATA
            field_name: Tag key or row column name
            limit: Maximum number of values returned

        Returns:
            (value, count) pairs sorted by count, descending
        """
        field_type = FieldType.parse(field_type)
        sql = build_top_values_query(field_type, field_name)

        rows: List[Dict[str, Any]] = []
        try:
            container = self.database.get_container_client(index)
            async for item in container.query_items(query=sql):
                rows.append(item)
        except Exception as e:
            logger.error(
                f"Error getting top values for field {field_type.value}.{field_name} from index {index}: {str(e)}"
            )
            return []

        return rank_top_values(rows, limit)

    async def get_top_values_for_fields(
        self,
        index: str,
        fields: Iterable[Tuple[FieldType, str]],
        limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ) -> Dict[Tuple[FieldType, str], TopValues]:
        """Fetch top values of independent fields concurrently."""
        keys = list(fields)
        results = await asyncio.gather(
            *(self.get_top_values(index, field_type, name, limit) for field_type, name in keys)
        )
        return dict(zip(keys, results))
