from fastapi import FastAPI, HTTPException, Query, UploadFile, File, Form, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional, List, Dict, Any, Callable
from pathlib import Path
from datetime import datetime
import os
import uuid
import logging
import traceback
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from config import Settings
from database import connect_to_cosmosdb, close_cosmosdb_connection, get_client, get_database_name
from memory_db import CosmosDbTabularMemory, FieldType, MemoryFilter
from agent import TabularFilterAgent, LangChainPromptExecutor, PromptExecutor
from agent.agent_schemas import (
    NaturalLanguageQueryRequest,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
)
from excel_parser import TabularExcelDecoder

app = FastAPI(title="Tabular Memory API")

# Process-wide services, set up on startup
_settings: Optional[Settings] = None
_memory: Optional[CosmosDbTabularMemory] = None


@app.on_event("startup")
async def startup_event():
    """Connect to Cosmos DB and load the embedding model on startup"""
    global _settings, _memory
    try:
        from memory_db.embedder import Embedder

        _settings = Settings.from_env()
        await connect_to_cosmosdb(_settings.cosmos)
        embedder = Embedder(_settings.embedding_model)
        _memory = CosmosDbTabularMemory(get_client(), embedder, database_name=get_database_name())
        logger.info("✅ Tabular memory initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize tabular memory: {e}")
        logger.warning("Continuing without Cosmos DB (memory endpoints will return 503)")


@app.on_event("shutdown")
async def shutdown_event():
    """Close Cosmos DB connection on shutdown"""
    try:
        await close_cosmosdb_connection()
    except Exception as e:
        logger.error(f"Error closing Cosmos DB connection: {e}")


ALLOWED_ORIGINS_ENV = os.getenv("CORS_ORIGINS", "")
if ALLOWED_ORIGINS_ENV:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in ALLOWED_ORIGINS_ENV.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception at {request.url.path}: {str(exc)}")
    logger.error(traceback.format_exc())

    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "message": "Internal server error",
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": str(request.url.path)
            }
        }
    )


# ============================================================================
# Dependencies
# ============================================================================

def get_memory() -> CosmosDbTabularMemory:
    if _memory is None:
        raise HTTPException(status_code=503, detail="Tabular memory not available. Check Cosmos DB configuration.")
    return _memory


def get_decoder() -> TabularExcelDecoder:
    return TabularExcelDecoder()


def get_prompt_executor_factory() -> Callable[[str], PromptExecutor]:
    default_provider = _settings.llm_provider if _settings else "gemini"

    def build(provider: Optional[str] = None) -> PromptExecutor:
        return LangChainPromptExecutor(provider=provider or default_provider)

    return build


def parse_filters(filters: Optional[List[Dict[str, Any]]]) -> Optional[List[MemoryFilter]]:
    if not filters:
        return None
    return [MemoryFilter.from_dict(clause) for clause in filters]


# ============================================================================
# Routes
# ============================================================================

@app.get("/")
async def root():
    return {"message": "Tabular Memory API", "status": "running"}


@app.get("/api/health")
async def health():
    return {
        "status": "healthy",
        "memory_available": _memory is not None,
        "timestamp": datetime.now().isoformat()
    }


@app.get("/api/indexes")
async def list_indexes(memory: CosmosDbTabularMemory = Depends(get_memory)):
    return {"indexes": await memory.get_indexes()}


@app.post("/api/indexes/{index}", status_code=201)
async def create_index(
    index: str,
    vector_size: Optional[int] = Query(None, ge=1, description="Defaults to the embedding model dimension"),
    memory: CosmosDbTabularMemory = Depends(get_memory)
):
    size = vector_size or memory.embedder.get_embedding_dimension()
    await memory.create_index(index, size)
    return {"index": index, "vector_size": size}


@app.delete("/api/indexes/{index}")
async def delete_index(index: str, memory: CosmosDbTabularMemory = Depends(get_memory)):
    await memory.delete_index(index)
    return {"index": index, "deleted": True}


@app.post("/api/indexes/{index}/import")
async def import_workbook(
    index: str,
    file: UploadFile = File(...),
    file_id: Optional[str] = Form(None),
    memory: CosmosDbTabularMemory = Depends(get_memory),
    decoder: TabularExcelDecoder = Depends(get_decoder)
):
    """
    Import an .xlsx workbook: one record per data row.

    Returns:
        File ID and number of imported rows
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename is required")

    file_ext = Path(file.filename).suffix.lower()
    if file_ext != ".xlsx":
        raise HTTPException(status_code=400, detail=f"Unsupported file format: {file_ext}. Supported: .xlsx")

    file_content = await file.read()
    if len(file_content) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        chunks = decoder.decode(file_content)
    except Exception as e:
        logger.error(f"Error decoding workbook {file.filename}: {str(e)}")
        raise HTTPException(status_code=400, detail=f"Error reading workbook: {str(e)}")

    file_id = file_id or uuid.uuid4().hex
    vectors = memory.embedder.embed_batch([chunk.text for chunk in chunks])

    for chunk, vector in zip(chunks, vectors):
        record = chunk.to_memory_record(file_id, vector=vector)
        try:
            await memory.upsert(index, record)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Imported {len(chunks)} rows from {file.filename} into {index} (file_id={file_id})")
    return {"index": index, "file_id": file_id, "filename": file.filename, "rows": len(chunks)}


@app.get("/api/indexes/{index}/fields")
async def get_fields(index: str, memory: CosmosDbTabularMemory = Depends(get_memory)):
    catalog = await memory.discover_fields(index)
    return catalog.to_dict()


@app.get("/api/indexes/{index}/fields/{field_type}/{field_name}/values")
async def get_field_values(
    index: str,
    field_type: str,
    field_name: str,
    limit: int = Query(10, ge=1, le=100),
    memory: CosmosDbTabularMemory = Depends(get_memory)
):
    if field_type.lower() not in ("tag", "tags", "data"):
        raise HTTPException(status_code=400, detail=f"Unknown field type: {field_type}. Must be 'tag' or 'data'")

    kind = FieldType.parse(field_type)
    top_values = await memory.get_top_values(index, kind, field_name, limit)
    return {
        "field_type": kind.value,
        "field_name": field_name,
        "values": [{"value": value, "count": count} for value, count in top_values]
    }


@app.post("/api/indexes/{index}/search", response_model=SearchResponse)
async def search(
    index: str,
    request: SearchRequest,
    memory: CosmosDbTabularMemory = Depends(get_memory)
):
    results = []
    async for record, relevance in memory.get_similar_list(
        index,
        request.query,
        filters=parse_filters(request.filters),
        min_relevance=request.min_relevance,
        limit=request.limit,
        with_embeddings=request.with_embeddings,
    ):
        results.append(SearchResultItem(id=record.id, relevance=relevance, tags=record.tags, payload=record.payload))
    return SearchResponse(results=results)


@app.post("/api/indexes/{index}/query", response_model=SearchResponse)
async def natural_language_query(
    index: str,
    request: NaturalLanguageQueryRequest,
    memory: CosmosDbTabularMemory = Depends(get_memory),
    executor_factory: Callable[[str], PromptExecutor] = Depends(get_prompt_executor_factory)
):
    try:
        executor = executor_factory(request.provider)
    except ValueError as e:
        raise HTTPException(status_code=503, detail=f"LLM not available: {str(e)}")

    agent = TabularFilterAgent(memory, memory, executor, index)
    results, grounding = await agent.process_query(
        request.question,
        min_relevance=request.min_relevance,
        limit=request.limit,
    )
    return SearchResponse(
        results=[
            SearchResultItem(id=record.id, relevance=relevance, tags=record.tags, payload=record.payload)
            for record, relevance in results
        ],
        grounding=grounding,
    )


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
