"""Unit tests for field discovery over a fake Cosmos DB database."""

import logging

import pytest
from azure.core.exceptions import ServiceRequestError

from memory_db.schema_discovery import (
    CosmosSchemaDiscovery,
    FieldCatalog,
    FieldType,
    build_top_values_query,
    format_field_value,
    rank_top_values,
)


@pytest.fixture
def database(cosmos_client):
    return cosmos_client.get_database_client("memory")


def test_field_type_parse():
    assert FieldType.parse("tag") == FieldType.TAG
    assert FieldType.parse("Tags") == FieldType.TAG
    assert FieldType.parse("data") == FieldType.DATA
    assert FieldType.parse("anything") == FieldType.DATA


def test_catalog_find_is_case_insensitive():
    catalog = FieldCatalog(tags={"Env"}, data={"server_name"})
    assert catalog.find(FieldType.TAG, "env") == "Env"
    assert catalog.find(FieldType.DATA, "SERVER_NAME") == "server_name"
    assert catalog.find(FieldType.DATA, "env") is None


@pytest.mark.parametrize("value, expected", [
    ("Production", "Production"),
    (True, "true"),
    (None, "null"),
    (8, "8"),
    (2.5, "2.5"),
])
def test_format_field_value(value, expected):
    assert format_field_value(value) == expected


def test_top_values_query_for_tags_unnests_array():
    sql = build_top_values_query(FieldType.TAG, "env")
    assert 'JOIN t IN c.tags["env"]' in sql
    assert "GROUP BY t" in sql


def test_top_values_query_for_data_filters_absent_fields():
    sql = build_top_values_query(FieldType.DATA, "environment")
    assert 'WHERE IS_DEFINED(c.data["environment"])' in sql
    assert 'GROUP BY c.data["environment"]' in sql


def test_rank_top_values_sorts_and_truncates():
    rows = [
        {"fieldValue": "Development", "occurrences": 1},
        {"fieldValue": "Production", "occurrences": 6},
        {"fieldValue": "Staging", "occurrences": 3},
    ]
    assert rank_top_values(rows, 2) == [("Production", 6), ("Staging", 3)]
    assert rank_top_values(rows, 0) == []


@pytest.mark.asyncio
class TestCosmosSchemaDiscovery:

    async def test_discover_fields_unions_sampled_keys(self, database):
        """Tag keys {env}, {env, loc}, {loc} give {env, loc}."""
        container = database.container("servers")
        container.query_results = [
            {"tags": {"env": ["prod"]}, "data": {"status": "Running"}},
            {"tags": {"env": ["dev"], "loc": ["eu"]}, "data": {"Status": "Stopped", "cores": 4}},
            {"tags": {"loc": ["us"]}, "data": None},
        ]

        catalog = await CosmosSchemaDiscovery(database).discover_fields("servers")

        assert catalog.tags == {"env", "loc"}
        # case-insensitive dedup keeps the first spelling seen
        assert catalog.data == {"status", "cores"}

    async def test_discover_fields_samples_a_bounded_number_of_documents(self, database):
        container = database.container("servers")
        container.query_results = []

        await CosmosSchemaDiscovery(database, sample_size=25).discover_fields("servers")

        query = container.queries[0]
        assert query["query"].startswith("SELECT TOP @sample c.tags, c.data FROM c")
        assert query["parameters"] == [{"name": "@sample", "value": 25}]

    async def test_discover_fields_on_missing_index_returns_empty_catalog(self, database, caplog):
        with caplog.at_level(logging.ERROR, logger="memory_db.schema_discovery"):
            catalog = await CosmosSchemaDiscovery(database).discover_fields("missing")

        assert catalog.is_empty()
        assert "Error getting filterable fields" in caplog.text

    async def test_discover_fields_on_unreachable_store_returns_empty_catalog(self, database):
        container = database.container("servers")
        container.query_error = ServiceRequestError("connection refused")

        catalog = await CosmosSchemaDiscovery(database).discover_fields("servers")

        assert catalog.is_empty()

    async def test_top_values_for_data_field(self, database):
        """Production=6, Staging=3, Development=1 with limit 2."""
        container = database.container("servers")
        container.query_results = [
            {"fieldValue": "Staging", "occurrences": 3},
            {"fieldValue": "Development", "occurrences": 1},
            {"fieldValue": "Production", "occurrences": 6},
        ]

        values = await CosmosSchemaDiscovery(database).get_top_values("servers", FieldType.DATA, "environment", limit=2)

        assert values == [("Production", 6), ("Staging", 3)]
        assert 'c.data["environment"]' in container.queries[0]["query"]

    async def test_top_values_accepts_field_type_text(self, database):
        container = database.container("servers")
        container.query_results = [{"fieldValue": "prod", "occurrences": 2}]

        values = await CosmosSchemaDiscovery(database).get_top_values("servers", "tag", "env")

        assert values == [("prod", 2)]
        assert 'JOIN t IN c.tags["env"]' in container.queries[0]["query"]

    async def test_top_values_on_missing_index_is_empty(self, database):
        assert await CosmosSchemaDiscovery(database).get_top_values("missing", FieldType.DATA, "x") == []

    async def test_top_values_for_several_fields(self, database):
        container = database.container("servers")

        def rows(query):
            if "environment" in query:
                return [{"fieldValue": "Production", "occurrences": 6}]
            return [{"fieldValue": True, "occurrences": 2}]

        container.query_results = rows

        result = await CosmosSchemaDiscovery(database).get_top_values_for_fields(
            "servers", [(FieldType.DATA, "environment"), (FieldType.DATA, "active")]
        )

        assert result == {
            (FieldType.DATA, "environment"): [("Production", 6)],
            (FieldType.DATA, "active"): [("true", 2)],
        }

    async def test_non_object_tags_and_data_are_skipped(self, database):
        """Documents from other writers may hold a list or a string instead of a map."""
        container = database.container("servers")
        container.query_results = [
            {"tags": {"env": ["prod"]}, "data": {"status": "Running"}},
            {"id": "legacy", "tags": ["x"], "data": "Name: web-01"},
        ]

        catalog = await CosmosSchemaDiscovery(database).discover_fields("servers")

        assert catalog.tags == {"env"}
        assert catalog.data == {"status"}

    async def test_unexpected_failures_give_empty_results(self, database, caplog):
        container = database.container("servers")
        container.query_error = RuntimeError("connection reset by peer")

        with caplog.at_level(logging.ERROR, logger="memory_db.schema_discovery"):
            catalog = await CosmosSchemaDiscovery(database).discover_fields("servers")
            values = await CosmosSchemaDiscovery(database).get_top_values("servers", FieldType.DATA, "status")

        assert catalog.is_empty()
        assert values == []
        assert "Error getting top values" in caplog.text
