"""
Cosmos DB memory connector

This module provides:
- Memory records and their Cosmos DB document codecs
- Filter compilation to parameterized Cosmos DB SQL
- Plain and tabular memory stores with vector similarity search
- Field discovery (known fields, most frequent values) for tabular indexes
"""

from .records import MemoryRecord, JsonOptions, normalize_field_name
from .filters import MemoryFilter, FilterCompiler, CompiledFilter, compile_filters
from .record_codec import CosmosRecordCodec, TabularRecordCodec, encode_id, decode_id
from .schema_discovery import FieldType, FieldCatalog, FieldDiscovery, CosmosSchemaDiscovery
from .cosmos_memory import CosmosDbMemory, relevance_from_distance, build_similarity_query
from .tabular_memory import CosmosDbTabularMemory

__all__ = [
    "MemoryRecord",
    "JsonOptions",
    "normalize_field_name",
    "MemoryFilter",
    "FilterCompiler",
    "CompiledFilter",
    "compile_filters",
    "CosmosRecordCodec",
    "TabularRecordCodec",
    "encode_id",
    "decode_id",
    "FieldType",
    "FieldCatalog",
    "FieldDiscovery",
    "CosmosSchemaDiscovery",
    "CosmosDbMemory",
    "CosmosDbTabularMemory",
    "relevance_from_distance",
    "build_similarity_query",
]
