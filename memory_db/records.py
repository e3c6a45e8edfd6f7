"""
Memory record model shared by the Cosmos DB connectors.

A record is the unit of storage: an id, a multi-valued tag map, one
embedding vector and a free-form payload. Tabular rows travel inside the
payload as JSON strings (see record_codec).
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Structured cell value: Null | Bool | Int | Float | String
ScalarValue = Optional[Union[bool, int, float, str]]

# Payload keys holding the serialized row and its provenance
TABULAR_DATA_KEY = "tabular_data"
SOURCE_INFO_KEY = "source_info"
TEXT_KEY = "text"

# Reserved tags used to co-locate rows of the same import
FILE_ID_TAG = "__file_id"
DOCUMENT_ID_TAG = "__document_id"


@dataclass(frozen=True)
class JsonOptions:
    """Serialization options passed explicitly to every encode/decode call."""
    ensure_ascii: bool = False
    sort_keys: bool = False

    def dumps(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=self.ensure_ascii, sort_keys=self.sort_keys, default=str)

    def loads(self, text: str) -> Any:
        return json.loads(text)


DEFAULT_JSON_OPTIONS = JsonOptions()

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")


def normalize_field_name(name: str) -> str:
    """
    Map a column name to the stored snake_case convention.

    An underscore is inserted before every uppercase letter that follows a
    lowercase one, then the whole name is lowercased:
    "serverPurpose" -> "server_purpose", "Server_Name" -> "server_name".
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class MemoryRecord(BaseModel):
    """A vector-embedded record as seen by callers of the memory store."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(..., frozen=True, description="Opaque identifier, unique within an index")
    vector: List[float] = Field(default_factory=list)
    tags: Dict[str, List[Optional[str]]] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)

    def add_tag(self, key: str, value: Optional[str]) -> "MemoryRecord":
        """Add a value to a tag; tag values behave as a set."""
        values = self.tags.setdefault(key, [])
        if value not in values:
            values.append(value)
        return self

    def get_tag(self, key: str) -> Optional[str]:
        """Return the first non-null value of a tag, if any."""
        for value in self.tags.get(key, []):
            if value is not None:
                return value
        return None

    def get_file_id(self) -> str:
        """File id used to group rows from the same import."""
        return self.get_tag(FILE_ID_TAG) or self.get_tag(DOCUMENT_ID_TAG) or self.id
