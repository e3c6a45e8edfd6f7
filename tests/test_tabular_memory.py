"""Unit tests for the tabular memory store."""

import json

import pytest

from memory_db.filters import MemoryFilter
from memory_db.record_codec import encode_id
from memory_db.records import MemoryRecord
from memory_db.schema_discovery import FieldType
from memory_db.tabular_memory import CosmosDbTabularMemory


@pytest.fixture
def memory(cosmos_client, embedder):
    return CosmosDbTabularMemory(cosmos_client, embedder, database_name="memory")


@pytest.fixture
def container(cosmos_client):
    return cosmos_client.get_database_client("memory").container("servers")


def row_record(record_id: str, data: dict, file_id: str = "inventory.xlsx") -> MemoryRecord:
    return MemoryRecord(
        id=record_id,
        vector=[0.0, 1.0, 0.0],
        tags={"__file_id": [file_id]},
        payload={
            "text": "row",
            "tabular_data": json.dumps(data),
            "source_info": json.dumps({"worksheet_name": "Servers", "row_number": "2"}),
        },
    )


@pytest.mark.asyncio
class TestCosmosDbTabularMemory:

    async def test_upsert_stores_columns_in_file_partition(self, memory, container):
        await memory.upsert("servers", row_record("r1", {"serverName": "web-01", "Environment": "Production"}))

        document = container.items[encode_id("r1")]
        assert document["file"] == "inventory.xlsx"
        assert document["data"] == {"server_name": "web-01", "environment": "Production"}
        assert document["source"] == {"worksheet_name": "Servers", "row_number": "2"}

    async def test_delete_uses_file_partition(self, memory, container):
        record = row_record("r1", {"a": 1})
        await memory.upsert("servers", record)

        await memory.delete("servers", record)

        assert container.deleted == [{"id": encode_id("r1"), "partition_key": "inventory.xlsx"}]

    async def test_similarity_search_with_structured_filter(self, memory, container):
        await memory.upsert("servers", row_record("r1", {"environment": "Production"}))
        document = dict(container.items[encode_id("r1")], SimilarityScore=0.4)
        container.query_results = [document]

        filters = [MemoryFilter().by_field("Environment", "Production")]
        results = [r async for r in memory.get_similar_list("servers", "prod servers", filters=filters, limit=3)]

        record, relevance = results[0]
        assert record.id == "r1"
        assert relevance == pytest.approx(0.8)
        assert json.loads(record.payload["tabular_data"]) == {"environment": "Production"}

        query = container.queries[-1]["query"]
        assert "c.data,c.source" in query
        assert 'WHERE (c.data["environment"] = @p_0)' in query

    async def test_field_discovery(self, memory, container):
        container.query_results = [
            {"tags": {"__file_id": ["f"]}, "data": {"environment": "Production", "cores": 8}},
        ]

        catalog = await memory.discover_fields("servers")

        assert catalog.tags == {"__file_id"}
        assert catalog.data == {"environment", "cores"}

    async def test_top_values(self, memory, container):
        container.query_results = [
            {"fieldValue": "Production", "occurrences": 6},
            {"fieldValue": "Staging", "occurrences": 3},
            {"fieldValue": "Development", "occurrences": 1},
        ]

        values = await memory.get_top_values("servers", FieldType.DATA, "environment", limit=2)

        assert values == [("Production", 6), ("Staging", 3)]

    async def test_top_values_for_fields(self, memory, container):
        container.query_results = [{"fieldValue": "x", "occurrences": 1}]

        result = await memory.get_top_values_for_fields("servers", [(FieldType.TAG, "env"), (FieldType.DATA, "a")])

        assert result == {(FieldType.TAG, "env"): [("x", 1)], (FieldType.DATA, "a"): [("x", 1)]}
        assert len(container.queries) == 2
