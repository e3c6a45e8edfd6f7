"""
Pydantic Schemas for the Filter Grounding Agent
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any

from memory_db.schema_discovery import FieldType

NO_MATCH = "none"


def _as_text(value: Any) -> str:
    # LLMs occasionally return numbers or booleans where text is expected
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class LLMResponse(BaseModel):
    """Base for JSON returned by the LLM (camelCase keys)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FilterCriterion(LLMResponse):
    """A filter the user seems to ask for, before grounding"""
    field_type: str = Field("data", description="'tag' or 'data'")
    field_name_hint: str = Field("", description="Free-text guess of the field name")
    value_hint: str = Field("", description="Free-text guess of the value")
    importance: int = Field(3, description="1-5, 5 = most important")

    @field_validator("value_hint", "field_name_hint", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("importance", mode="before")
    @classmethod
    def coerce_importance(cls, value: Any) -> Any:
        # 4.5 or "4" from the LLM; halves round up
        if isinstance(value, (float, str)):
            try:
                number = float(value)
            except ValueError:
                return value
            if math.isfinite(number):
                return math.floor(number + 0.5)
        return value


class FieldMatchResponse(LLMResponse):
    field_type: str = NO_MATCH
    field_name: str = NO_MATCH
    confidence: float = 0.0
    reasoning: str = ""


class ValueMatchResponse(LLMResponse):
    value: str = ""
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class GroundedCriterion(BaseModel):
    """A criterion that survived field and value matching"""
    field_type: FieldType
    field_name: str
    value: str
    importance: int
    field_confidence: float
    value_confidence: float

    @property
    def filter_key(self) -> str:
        if self.field_type == FieldType.TAG:
            return self.field_name
        return f"data.{self.field_name}"


class GroundedFilterResult(BaseModel):
    """Outcome of grounding one natural-language query"""
    query: str
    criteria: List[FilterCriterion] = []
    applied: List[GroundedCriterion] = []
    filters: List[Dict[str, List[Any]]] = Field(default_factory=list, description="MemoryFilter.to_dict() per clause")
    stopped_early: bool = False


class SearchRequest(BaseModel):
    """Request model for a filtered similarity search"""
    query: str = Field(..., description="Text to search for")
    filters: Optional[List[Dict[str, Any]]] = Field(
        None,
        description="OR-ed list of {key: value} clauses; 'data.<Column>' keys address row columns"
    )
    min_relevance: float = Field(0.0, ge=0.0, le=1.0)
    limit: int = Field(5, ge=1, le=100)
    with_embeddings: bool = False


class NaturalLanguageQueryRequest(BaseModel):
    """Request model for a grounded natural-language query"""
    question: str = Field(..., description="User's natural language question")
    provider: Optional[str] = Field(None, description="LLM provider: 'gemini' or 'groq'")
    min_relevance: float = Field(0.0, ge=0.0, le=1.0)
    limit: int = Field(5, ge=1, le=100)


class SearchResultItem(BaseModel):
    id: str
    relevance: float
    tags: Dict[str, List[Optional[str]]]
    payload: Dict[str, Any]


class SearchResponse(BaseModel):
    results: List[SearchResultItem]
    grounding: Optional[GroundedFilterResult] = None
