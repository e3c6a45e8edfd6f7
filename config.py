"""
Application configuration
Reads settings from environment variables (and a local .env file)
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from memory_db.cosmos_memory import DEFAULT_DATABASE_NAME

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"

load_dotenv()


class CosmosDbConfig(BaseModel):
    """Connection settings for Azure Cosmos DB (NoSQL API)"""
    endpoint: str = Field(..., description="Account endpoint, e.g. https://<account>.documents.azure.com:443/")
    api_key: Optional[str] = Field(None, description="Account key")
    database_name: str = Field(DEFAULT_DATABASE_NAME, description="Database holding one container per index")

    @classmethod
    def from_env(cls) -> "CosmosDbConfig":
        """Build the config from AZURE_COSMOSDB_* variables"""
        endpoint = os.getenv("AZURE_COSMOSDB_ENDPOINT")
        if not endpoint:
            raise ValueError("AZURE_COSMOSDB_ENDPOINT not found in environment")

        return cls(
            endpoint=endpoint,
            api_key=os.getenv("AZURE_COSMOSDB_API_KEY"),
            database_name=os.getenv("AZURE_COSMOSDB_DATABASE", DEFAULT_DATABASE_NAME),
        )


class Settings(BaseModel):
    """Process-wide settings"""
    cosmos: CosmosDbConfig
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    llm_provider: str = "gemini"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            cosmos=CosmosDbConfig.from_env(),
            embedding_model=os.getenv("EMBEDDING_MODEL_NAME", DEFAULT_EMBEDDING_MODEL),
            llm_provider=os.getenv("LLM_PROVIDER", "gemini"),
        )
