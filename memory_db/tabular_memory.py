"""
Tabular flavour of the Cosmos DB memory store.

Rows keep their column values in a filterable ``data`` map and their
provenance in ``source``, and the store can report which fields exist and
which values are most common, for grounding natural-language filters.
"""

from typing import Dict, Iterable, Optional, Tuple

from .cosmos_memory import DEFAULT_DATABASE_NAME, CosmosDbMemory
from .filters import FilterCompiler
from .record_codec import TabularRecordCodec
from .schema_discovery import (
    DEFAULT_TOP_VALUES_LIMIT,
    DISCOVERY_SAMPLE_SIZE,
    CosmosSchemaDiscovery,
    FieldCatalog,
    FieldType,
    TopValues,
)


class CosmosDbTabularMemory(CosmosDbMemory):
    """Memory store for spreadsheet rows; also implements FieldDiscovery."""

    def __init__(
        self,
        client,
        embedder,
        database_name: str = DEFAULT_DATABASE_NAME,
        codec: Optional[TabularRecordCodec] = None,
        normalize_field_names: bool = True,
        sample_size: int = DISCOVERY_SAMPLE_SIZE,
    ):
        super().__init__(
            client,
            embedder,
            database_name=database_name,
            codec=codec or TabularRecordCodec(normalize_field_names=normalize_field_names),
            compiler=FilterCompiler(normalize_field_names=normalize_field_names),
        )
        self.sample_size = sample_size

    @property
    def discovery(self) -> CosmosSchemaDiscovery:
        return CosmosSchemaDiscovery(self.database, sample_size=self.sample_size)

    async def discover_fields(self, index: str) -> FieldCatalog:
        return await self.discovery.discover_fields(index)

    async def get_top_values(
        self,
        index: str,
        field_type: FieldType,
        field_name: str,
        limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ) -> TopValues:
        return await self.discovery.get_top_values(index, field_type, field_name, limit)

    async def get_top_values_for_fields(
        self,
        index: str,
        fields: Iterable[Tuple[FieldType, str]],
        limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ) -> Dict[Tuple[FieldType, str], TopValues]:
        return await self.discovery.get_top_values_for_fields(index, fields, limit)
