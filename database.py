"""
Cosmos DB Connection Module
Handles the async Azure Cosmos DB client lifecycle
"""

from azure.cosmos.aio import CosmosClient, DatabaseProxy
from typing import Optional
import logging

from config import CosmosDbConfig

logger = logging.getLogger(__name__)

# Global client instance
_client: Optional[CosmosClient] = None
_database: Optional[DatabaseProxy] = None
_database_name: Optional[str] = None


async def connect_to_cosmosdb(config: Optional[CosmosDbConfig] = None):
    """Connect to Cosmos DB and make sure the memory database exists"""
    global _client, _database, _database_name

    config = config or CosmosDbConfig.from_env()
    if not config.api_key:
        raise ValueError("AZURE_COSMOSDB_API_KEY not found in environment")

    try:
        logger.info(f"Connecting to Cosmos DB: {config.endpoint}")

        _client = CosmosClient(config.endpoint, credential=config.api_key)
        # also verifies the account is reachable
        _database = await _client.create_database_if_not_exists(id=config.database_name)
        _database_name = config.database_name
        logger.info(f"✅ Successfully connected to Cosmos DB database: {config.database_name}")

        return True
    except Exception as e:
        logger.error(f"❌ Failed to connect to Cosmos DB: {str(e)}")
        if _client is not None:
            await _client.close()
        _client = None
        _database = None
        raise


async def close_cosmosdb_connection():
    """Close Cosmos DB connection"""
    global _client, _database
    if _client:
        await _client.close()
        _client = None
        _database = None
        logger.info("Cosmos DB connection closed")


def get_database() -> DatabaseProxy:
    """Get database instance"""
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_to_cosmosdb() first.")
    return _database


def get_database_name() -> str:
    if _database_name is None:
        raise RuntimeError("Database not initialized. Call connect_to_cosmosdb() first.")
    return _database_name


def get_client() -> CosmosClient:
    """Get Cosmos DB client instance"""
    if _client is None:
        raise RuntimeError("Cosmos DB client not initialized. Call connect_to_cosmosdb() first.")
    return _client
