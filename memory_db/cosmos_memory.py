"""
Azure Cosmos DB memory store.

Stores one document per memory record in a container per index and runs
vector similarity search with VectorDistance, combined with compiled
memory filters.
"""

import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import numpy as np
from azure.cosmos import PartitionKey
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from .filters import DEFAULT_ALIAS, CompiledFilter, FilterCompiler, MemoryFilter
from .record_codec import FILE_FIELD, VECTOR_FIELD, CosmosRecordCodec, encode_id
from .records import MemoryRecord

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "memory"
SIMILARITY_SCORE_FIELD = "SimilarityScore"


def relevance_from_distance(distance: float) -> float:
    """Map cosine distance in [0, 2] to relevance in [1, 0]."""
    return (2.0 - distance) / 2.0


def build_similarity_query(
    codec: CosmosRecordCodec,
    compiled: CompiledFilter,
    query_vector: Sequence[float],
    limit: int,
    with_embeddings: bool = False,
) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Vector search query ordered by ascending distance (closest first).

    Returns:
        (sql, parameters) ready for container.query_items
    """
    alias = compiled.alias
    vector_path = f"{alias}.{VECTOR_FIELD}"
    sql = (
        f"SELECT TOP @limit {codec.columns(alias, with_embeddings)}, "
        f"VectorDistance({vector_path}, @queryEmbedding) AS {SIMILARITY_SCORE_FIELD} "
        f"FROM {alias} "
    )
    if compiled.where_clause:
        sql += f"{compiled.where_clause} "
    sql += f"ORDER BY VectorDistance({vector_path}, @queryEmbedding)"

    parameters = [
        {"name": "@limit", "value": limit},
        {"name": "@queryEmbedding", "value": [float(v) for v in query_vector]},
    ]
    parameters.extend(compiled.cosmos_parameters())
    return sql, parameters


def build_list_query(
    codec: CosmosRecordCodec,
    compiled: CompiledFilter,
    limit: int,
    with_embeddings: bool = False,
) -> Tuple[str, List[Dict[str, Any]]]:
    alias = compiled.alias
    sql = f"SELECT TOP @limit {codec.columns(alias, with_embeddings)} FROM {alias}"
    if compiled.where_clause:
        sql += f" {compiled.where_clause}"

    parameters = [{"name": "@limit", "value": limit}]
    parameters.extend(compiled.cosmos_parameters())
    return sql, parameters


def container_indexing_policy() -> Dict[str, Any]:
    return {
        "indexingMode": "consistent",
        "automatic": True,
        "includedPaths": [{"path": "/*"}],
        "excludedPaths": [{"path": f"/{VECTOR_FIELD}/*"}, {"path": '/"_etag"/?'}],
        "vectorIndexes": [{"path": f"/{VECTOR_FIELD}", "type": "quantizedFlat"}],
    }


def container_vector_policy(vector_size: int) -> Dict[str, Any]:
    return {
        "vectorEmbeddings": [
            {
                "path": f"/{VECTOR_FIELD}",
                "dataType": "float32",
                "distanceFunction": "cosine",
                "dimensions": vector_size,
            }
        ]
    }


class CosmosDbMemory:
    """Memory store for plain (non-tabular) records."""

    def __init__(
        self,
        client,
        embedder,
        database_name: str = DEFAULT_DATABASE_NAME,
        codec: Optional[CosmosRecordCodec] = None,
        compiler: Optional[FilterCompiler] = None,
    ):
        """
        Initialize the memory store.

        Args:
            client: azure.cosmos.aio CosmosClient (see database.get_client())
            embedder: Object with embed_text(text) -> List[float]
            database_name: Cosmos DB database holding one container per index
            codec: Record codec; defaults to the plain document codec
            compiler: Filter compiler; defaults to FilterCompiler()
        """
        self.client = client
        self.embedder = embedder
        self.database_name = database_name
        self.codec = codec or CosmosRecordCodec()
        self.compiler = compiler or FilterCompiler()
        self._vector_sizes: Dict[str, Optional[int]] = {}

    @property
    def database(self):
        return self.client.get_database_client(self.database_name)

    def _container(self, index: str):
        return self.database.get_container_client(index)

    # Index management

    async def create_index(self, index: str, vector_size: int) -> None:
        database = await self.client.create_database_if_not_exists(id=self.database_name)
        await database.create_container_if_not_exists(
            id=index,
            partition_key=PartitionKey(path=f"/{FILE_FIELD}"),
            indexing_policy=container_indexing_policy(),
            vector_embedding_policy=container_vector_policy(vector_size),
        )
        self._vector_sizes[index] = vector_size
        logger.info(f"Created/ensured container {index} in database {self.database_name} (vector size {vector_size})")

    async def get_indexes(self) -> List[str]:
        indexes: List[str] = []
        try:
            async for properties in self.database.list_containers():
                if properties.get("id"):
                    indexes.append(properties["id"])
        except CosmosResourceNotFoundError:
            logger.warning(f"Database {self.database_name} not found.")
        return indexes

    async def delete_index(self, index: str) -> None:
        try:
            await self.database.delete_container(index)
            logger.info(f"Deleted container {index} from database {self.database_name}")
        except CosmosResourceNotFoundError:
            logger.warning(f"Index {index} or database {self.database_name} not found for deletion.")
        self._vector_sizes.pop(index, None)

    # Records

    async def _vector_size(self, index: str) -> Optional[int]:
        """Dimension declared by the container's vector embedding policy, cached per index."""
        if index not in self._vector_sizes:
            properties = await self._container(index).read()
            embeddings = (properties.get("vectorEmbeddingPolicy") or {}).get("vectorEmbeddings") or []
            declared = [e.get("dimensions") for e in embeddings if e.get("path") == f"/{VECTOR_FIELD}"]
            size = int(declared[0]) if declared and declared[0] is not None else None
            if size is None:
                logger.warning(f"Index {index} declares no vector dimension; vector sizes are not checked")
            self._vector_sizes[index] = size
        return self._vector_sizes[index]

    async def _check_vector(self, index: str, record: MemoryRecord) -> None:
        vector = np.asarray(record.vector, dtype=np.float64)
        expected = await self._vector_size(index)
        if expected is not None and vector.shape != (expected,):
            raise ValueError(
                f"Record {record.id} has a vector of size {vector.size}, index {index} expects {expected}"
            )
        if not np.all(np.isfinite(vector)):
            raise ValueError(f"Record {record.id} has a vector with non-finite values")

    def _encode(self, record: MemoryRecord) -> Dict[str, Any]:
        return self.codec.encode(record)

    async def upsert(self, index: str, record: MemoryRecord) -> str:
        """
        Insert or fully replace a record.

        Returns:
            The record id (not the encoded document id)
        """
        await self._check_vector(index, record)
        document = self._encode(record)
        await self._container(index).upsert_item(body=document)
        logger.debug(f"Upserted record {record.id} into {index}")
        return record.id

    async def delete(self, index: str, record: MemoryRecord) -> None:
        encoded_id = encode_id(record.id)
        try:
            await self._container(index).delete_item(
                item=encoded_id,
                partition_key=self.codec.partition_key(record),
            )
            logger.debug(f"Deleted record {record.id} from index {index}")
        except CosmosResourceNotFoundError:
            logger.debug(f"Record {record.id} (encoded: {encoded_id}) not found in index {index}, nothing to delete")

    async def _query(self, index: str, sql: str, parameters: List[Dict[str, Any]]) -> AsyncIterator[Dict[str, Any]]:
        """
        Iterate query results page by page.

        Pages are fetched lazily; when the generator is closed early the page
        iterator is closed (when it supports it) and no further pages are requested.
        """
        pages = self._container(index).query_items(query=sql, parameters=parameters).by_page()
        try:
            async for page in pages:
                async for item in page:
                    yield item
        finally:
            close = getattr(pages, "aclose", None)
            if close is not None:
                await close()
            logger.debug(f"Released query cursor on {index}")

    async def get_list(
        self,
        index: str,
        filters: Optional[Sequence[MemoryFilter]] = None,
        limit: int = 1,
        with_embeddings: bool = False,
    ) -> AsyncIterator[MemoryRecord]:
        compiled = self.compiler.compile(DEFAULT_ALIAS, filters)
        sql, parameters = build_list_query(self.codec, compiled, limit, with_embeddings)

        async with aclosing(self._query(index, sql, parameters)) as items:
            async for item in items:
                yield self.codec.decode(item, with_embeddings)

    async def search_by_vector(
        self,
        index: str,
        query_vector: Sequence[float],
        filters: Optional[Sequence[MemoryFilter]] = None,
        min_relevance: float = 0.0,
        limit: int = 1,
        with_embeddings: bool = False,
    ) -> AsyncIterator[Tuple[MemoryRecord, float]]:
        """
        Stream (record, relevance) pairs closest to ``query_vector``.

        The store applies ``limit`` and the ordering; ``min_relevance`` is
        applied afterwards, so fewer than ``limit`` results may come back.
        If the vector index is not usable the stream simply ends; the
        failure is only visible in the logs.
        """
        compiled = self.compiler.compile(DEFAULT_ALIAS, filters)
        sql, parameters = build_similarity_query(self.codec, compiled, query_vector, limit, with_embeddings)
        logger.debug(f"Executing vector search query: {sql}")

        async with aclosing(self._query(index, sql, parameters)) as items:
            try:
                async for item in items:
                    distance = float(item.get(SIMILARITY_SCORE_FIELD, 2.0))
                    relevance = relevance_from_distance(distance)
                    logger.debug(f"ID: {item.get('id')}, Distance: {distance}, Relevance: {relevance}")

                    if relevance < min_relevance:
                        logger.debug(
                            f"ID: {item.get('id')} filtered out by minRelevance ({relevance} < {min_relevance})"
                        )
                        continue

                    yield self.codec.decode(item, with_embeddings), relevance
            except CosmosHttpResponseError as e:
                if "VectorDistance" not in str(e):
                    raise
                logger.error(
                    f"Vector search failed on index {index}: {str(e)}. Ensure the container has a vector "
                    f"embedding policy and a vector index on '/{VECTOR_FIELD}' (recreate it with create_index)."
                )

    async def get_similar_list(
        self,
        index: str,
        text: str,
        filters: Optional[Sequence[MemoryFilter]] = None,
        min_relevance: float = 0.0,
        limit: int = 1,
        with_embeddings: bool = False,
    ) -> AsyncIterator[Tuple[MemoryRecord, float]]:
        """Embed ``text`` and stream the most similar records."""
        query_vector = self.embedder.embed_text(text)
        async with aclosing(
            self.search_by_vector(index, query_vector, filters, min_relevance, limit, with_embeddings)
        ) as results:
            async for result in results:
                yield result
