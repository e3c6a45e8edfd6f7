"""Shared fixtures: an in-memory stand-in for the async Cosmos DB SDK, stub embedders and LLMs."""

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from memory_db.schema_discovery import FieldCatalog, FieldType, TopValues


class FakePage:
    def __init__(self, items: List[Dict[str, Any]]):
        self.items = items

    async def __aiter__(self):
        for item in self.items:
            yield item


class FakeItemPaged:
    """Mimics AsyncItemPaged: async-iterable and pageable."""

    def __init__(self, items: List[Dict[str, Any]], page_size: int = 2, error: Optional[Exception] = None,
                 error_after: int = 0):
        self.items = items
        self.page_size = page_size
        self.error = error
        self.error_after = error_after
        self.pages_served = 0
        self.closed = False

    async def _iter_items(self):
        for position, item in enumerate(self.items):
            if self.error is not None and position == self.error_after:
                raise self.error
            yield item
        if self.error is not None and self.error_after >= len(self.items):
            raise self.error

    def __aiter__(self):
        return self._iter_items().__aiter__()

    async def by_page(self, continuation_token=None):
        page: List[Dict[str, Any]] = []
        try:
            async for item in self._iter_items():
                page.append(item)
                if len(page) == self.page_size:
                    self.pages_served += 1
                    yield FakePage(page)
                    page = []
            if page:
                self.pages_served += 1
                yield FakePage(page)
        finally:
            self.closed = True


class FakeContainer:
    def __init__(self, container_id: str, exists: bool = True):
        self.id = container_id
        self.exists = exists
        self.items: Dict[str, Dict[str, Any]] = {}
        self.queries: List[Dict[str, Any]] = []
        # rows returned by the next queries; defaults to the stored items
        self.query_results: Optional[Union[List[Dict[str, Any]], Callable[[str], List[Dict[str, Any]]]]] = None
        self.query_error: Optional[Exception] = None
        self.query_error_after = 0
        self.deleted: List[Dict[str, Any]] = []
        self.paged_results: List[FakeItemPaged] = []
        self.properties: Dict[str, Any] = {"id": container_id}

    def _not_found(self):
        return CosmosResourceNotFoundError(status_code=404, message=f"Resource Not Found: {self.id}")

    def query_items(self, query: str, parameters: Optional[List[Dict[str, Any]]] = None, **kwargs):
        self.queries.append({"query": query, "parameters": list(parameters or [])})
        if not self.exists:
            return FakeItemPaged([], error=self._not_found())

        if callable(self.query_results):
            rows = self.query_results(query)
        elif self.query_results is not None:
            rows = self.query_results
        else:
            rows = list(self.items.values())
        paged = FakeItemPaged(list(rows), error=self.query_error, error_after=self.query_error_after)
        self.paged_results.append(paged)
        return paged

    async def read(self, **kwargs) -> Dict[str, Any]:
        if not self.exists:
            raise self._not_found()
        return dict(self.properties)

    async def upsert_item(self, body: Dict[str, Any], **kwargs):
        if not self.exists:
            raise self._not_found()
        self.items[body["id"]] = json.loads(json.dumps(body))
        return body

    async def delete_item(self, item: str, partition_key: Any, **kwargs):
        document = self.items.get(item)
        if not self.exists or document is None or document.get("file") != partition_key:
            raise self._not_found()
        self.deleted.append({"id": item, "partition_key": partition_key})
        del self.items[item]


class FakeDatabase:
    def __init__(self, database_id: str, exists: bool = False):
        self.id = database_id
        self.exists = exists
        self.containers: Dict[str, FakeContainer] = {}
        self.created_containers: List[Dict[str, Any]] = []

    def container(self, container_id: str) -> FakeContainer:
        """Test helper: register (or return) an existing container."""
        self.exists = True
        if container_id not in self.containers:
            self.containers[container_id] = FakeContainer(container_id)
        return self.containers[container_id]

    def get_container_client(self, container_id: str) -> FakeContainer:
        if container_id in self.containers:
            return self.containers[container_id]
        return FakeContainer(container_id, exists=False)

    async def create_container_if_not_exists(self, id: str, partition_key=None, **kwargs) -> FakeContainer:
        self.created_containers.append({"id": id, "partition_key": partition_key, **kwargs})
        container = self.container(id)
        if kwargs.get("vector_embedding_policy"):
            container.properties["vectorEmbeddingPolicy"] = kwargs["vector_embedding_policy"]
        return container

    async def list_containers(self, **kwargs):
        if not self.exists:
            raise CosmosResourceNotFoundError(status_code=404, message=f"Database {self.id} not found")
        for container_id in self.containers:
            yield {"id": container_id}

    async def delete_container(self, container: str, **kwargs):
        if not self.exists or container not in self.containers:
            raise CosmosResourceNotFoundError(status_code=404, message=f"Container {container} not found")
        del self.containers[container]


class FakeCosmosClient:
    def __init__(self):
        self.databases: Dict[str, FakeDatabase] = {}
        self.closed = False

    def get_database_client(self, database: str) -> FakeDatabase:
        if database not in self.databases:
            self.databases[database] = FakeDatabase(database)
        return self.databases[database]

    async def create_database_if_not_exists(self, id: str, **kwargs) -> FakeDatabase:
        database = self.get_database_client(id)
        database.exists = True
        return database

    async def close(self):
        self.closed = True


class StubEmbedder:
    """Deterministic 3-dimensional embedder."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = vectors or {}
        self.calls: List[str] = []

    def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, [1.0, 0.0, 0.0]))

    def embed_batch(self, texts: List[str], batch_size: int = 32) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]

    def get_embedding_dimension(self) -> int:
        return 3


class ScriptedExecutor:
    """PromptExecutor returning scripted responses in order; exceptions are raised."""

    def __init__(self, responses: List[Union[str, Exception]]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, prompt_template: str, variables: Dict[str, Any]) -> str:
        self.calls.append({"template": prompt_template, "variables": dict(variables)})
        if not self.responses:
            raise AssertionError("No scripted LLM response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeDiscovery:
    """FieldDiscovery returning a fixed catalog and fixed top values."""

    def __init__(self, catalog: FieldCatalog, top_values: Optional[Dict[str, TopValues]] = None):
        self.catalog = catalog
        self.top_values = top_values or {}
        self.discover_calls = 0
        self.top_value_calls: List[tuple] = []

    async def discover_fields(self, index: str) -> FieldCatalog:
        self.discover_calls += 1
        return self.catalog

    async def get_top_values(self, index: str, field_type: FieldType, field_name: str, limit: int = 10) -> TopValues:
        self.top_value_calls.append((field_type, field_name))
        return list(self.top_values.get(field_name, []))[:limit]


class RecordingMemory:
    """Captures the filters passed to get_similar_list."""

    def __init__(self, results=None):
        self.results = results or []
        self.calls: List[Dict[str, Any]] = []

    async def get_similar_list(self, index, text, filters=None, min_relevance=0.0, limit=1, with_embeddings=False):
        self.calls.append({"index": index, "text": text, "filters": filters, "limit": limit})
        for result in self.results:
            yield result


def vector_distance_error() -> CosmosHttpResponseError:
    return CosmosHttpResponseError(
        status_code=400,
        message="One of the input values is invalid. The first argument of VectorDistance must be a vector path.",
    )


@pytest.fixture
def cosmos_client():
    return FakeCosmosClient()


@pytest.fixture
def embedder():
    return StubEmbedder()
