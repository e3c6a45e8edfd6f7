"""
Mapping between MemoryRecord and the flat documents persisted in Cosmos DB.

Persisted document shape:
    id        encoded record id
    file      partition key
    tags      map of tag key -> list of values
    embedding float array
    payload   free-form map
    data      row values (tabular documents only)
    source    row provenance (tabular documents only)
"""

import base64
import logging
from typing import Any, Dict, List, Optional

from .records import (
    DEFAULT_JSON_OPTIONS,
    SOURCE_INFO_KEY,
    TABULAR_DATA_KEY,
    TEXT_KEY,
    JsonOptions,
    MemoryRecord,
    ScalarValue,
    normalize_field_name,
)
from .text_formats import parse_tabular_text

logger = logging.getLogger(__name__)

ID_FIELD = "id"
FILE_FIELD = "file"
TAGS_FIELD = "tags"
VECTOR_FIELD = "embedding"
PAYLOAD_FIELD = "payload"
DATA_FIELD = "data"
SOURCE_FIELD = "source"


def encode_id(record_id: str) -> str:
    """Base64 of the UTF-8 bytes; '=' padding becomes '_' and '/' becomes '-' (not allowed in ids)."""
    encoded = base64.b64encode(record_id.encode("utf-8")).decode("ascii")
    return encoded.replace("=", "_").replace("/", "-")


def decode_id(encoded_id: str) -> str:
    raw = base64.b64decode(encoded_id.replace("_", "=").replace("-", "/"))
    return raw.decode("utf-8")


class CosmosRecordCodec:
    """Codec for plain memory documents (no tabular columns)."""

    FIELDS = (ID_FIELD, FILE_FIELD, TAGS_FIELD, VECTOR_FIELD, PAYLOAD_FIELD)

    def __init__(self, json_options: JsonOptions = DEFAULT_JSON_OPTIONS):
        self.json_options = json_options

    def columns(self, alias: Optional[str] = "c", with_embeddings: bool = False) -> str:
        """Comma separated projection for SELECT statements."""
        names = []
        for name in self.FIELDS:
            if name == VECTOR_FIELD and not with_embeddings:
                continue
            names.append(f"{alias}.{name}" if alias else name)
        return ",".join(names)

    def partition_key(self, record: MemoryRecord) -> str:
        return record.id

    def encode(self, record: MemoryRecord) -> Dict[str, Any]:
        return {
            ID_FIELD: encode_id(record.id),
            FILE_FIELD: self.partition_key(record),
            TAGS_FIELD: {key: list(values) for key, values in record.tags.items()},
            VECTOR_FIELD: [float(v) for v in record.vector],
            PAYLOAD_FIELD: dict(record.payload),
        }

    def decode(self, document: Dict[str, Any], with_embedding: bool = True) -> MemoryRecord:
        vector: List[float] = []
        if with_embedding and document.get(VECTOR_FIELD):
            vector = [float(v) for v in document[VECTOR_FIELD]]

        return MemoryRecord(
            id=decode_id(document[ID_FIELD]),
            vector=vector,
            tags={key: list(values or []) for key, values in (document.get(TAGS_FIELD) or {}).items()},
            payload=dict(document.get(PAYLOAD_FIELD) or {}),
        )


class TabularRecordCodec(CosmosRecordCodec):
    """
    Codec for tabular documents.

    Row values and provenance are stored in the top-level ``data`` and
    ``source`` maps so they can be filtered on. Callers exchange them through
    the ``tabular_data`` / ``source_info`` payload keys as JSON strings, or,
    for legacy records, through the human-readable ``text`` payload.
    """

    FIELDS = (ID_FIELD, FILE_FIELD, TAGS_FIELD, DATA_FIELD, SOURCE_FIELD, VECTOR_FIELD, PAYLOAD_FIELD)

    def __init__(
        self,
        json_options: JsonOptions = DEFAULT_JSON_OPTIONS,
        parse_legacy_text: bool = True,
        normalize_field_names: bool = True,
    ):
        super().__init__(json_options)
        self.parse_legacy_text = parse_legacy_text
        self.normalize_field_names = normalize_field_names

    def partition_key(self, record: MemoryRecord) -> str:
        # rows from the same import share a partition
        return record.get_file_id()

    def encode(
        self,
        record: MemoryRecord,
        data: Optional[Dict[str, ScalarValue]] = None,
        source: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Build the Cosmos document for a record.

        Args:
            record: Record to persist
            data: Row values; taken from the payload when not given
            source: Row provenance; taken from the payload when not given

        Returns:
            Document ready for upsert
        """
        document = super().encode(record)

        if data is None:
            data = self._load_json_object(record.payload.get(TABULAR_DATA_KEY), TABULAR_DATA_KEY, record.id)
        if source is None:
            source = self._load_json_object(record.payload.get(SOURCE_INFO_KEY), SOURCE_INFO_KEY, record.id)

        if data is None and self.parse_legacy_text:
            parsed = parse_tabular_text(record.payload.get(TEXT_KEY))
            if parsed is not None:
                data, legacy_source = parsed
                if source is None:
                    source = legacy_source

        document[DATA_FIELD] = self._normalize_keys(data or {})
        document[SOURCE_FIELD] = {key: str(value) for key, value in (source or {}).items()}
        return document

    def decode(self, document: Dict[str, Any], with_embedding: bool = True) -> MemoryRecord:
        record = super().decode(document, with_embedding)

        data = document.get(DATA_FIELD) or {}
        source = document.get(SOURCE_FIELD) or {}

        if not data and self.parse_legacy_text:
            parsed = parse_tabular_text(record.payload.get(TEXT_KEY))
            if parsed is not None:
                data = self._normalize_keys(parsed[0])
                source = source or parsed[1]

        if data:
            record.payload[TABULAR_DATA_KEY] = self.json_options.dumps(data)
        if source:
            record.payload[SOURCE_INFO_KEY] = self.json_options.dumps(source)

        return record

    def _normalize_keys(self, data: Dict[str, ScalarValue]) -> Dict[str, ScalarValue]:
        if not self.normalize_field_names:
            return dict(data)
        return {normalize_field_name(key): value for key, value in data.items()}

    def _load_json_object(self, raw: Any, key: str, record_id: str) -> Optional[Dict[str, Any]]:
        if raw is None:
            return None
        if isinstance(raw, dict):
            return raw
        if not isinstance(raw, str):
            logger.error(f"Payload key '{key}' of record {record_id} is not a JSON string, ignoring it")
            return None

        try:
            value = self.json_options.loads(raw)
        except ValueError as e:
            logger.error(f"Malformed JSON in payload key '{key}' of record {record_id}: {str(e)}")
            return None

        if not isinstance(value, dict):
            logger.error(f"Payload key '{key}' of record {record_id} does not hold a JSON object")
            return None
        return value
