"""
Natural-language filter grounding

Turns a user question into a MemoryFilter by asking the LLM for candidate
criteria and confirming every field and value against what the index
actually contains, then runs the similarity search with that filter.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from agent.agent_schemas import (
    NO_MATCH,
    FieldMatchResponse,
    FilterCriterion,
    GroundedCriterion,
    GroundedFilterResult,
    ValueMatchResponse,
)
from agent.llm import PromptExecutor, extract_json_text
from agent.prompts import CRITERIA_EXTRACTION_PROMPT, FIELD_MATCH_PROMPT, VALUE_MATCH_PROMPT
from memory_db.filters import MemoryFilter
from memory_db.records import MemoryRecord
from memory_db.schema_discovery import (
    DEFAULT_TOP_VALUES_LIMIT,
    FieldCatalog,
    FieldDiscovery,
    FieldType,
    TopValues,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.6
STRONG_CONFIDENCE = 0.8
STRONG_IMPORTANCE = 4
MAX_CRITERIA = 3
# confidence given to a value hint when the field has no known values
UNVERIFIED_VALUE_CONFIDENCE = 0.5


def readable_field_name(name: str) -> str:
    """'server_purpose' -> 'Server Purpose'"""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_") if word)


def describe_fields(catalog: FieldCatalog) -> str:
    lines = [f"- Tag: {name} (internal name: {name})" for name in sorted(catalog.tags)]
    lines.extend(
        f"- Data field: {readable_field_name(name)} (internal name: {name})" for name in sorted(catalog.data)
    )
    return "\n".join(lines)


def describe_values(top_values: TopValues) -> str:
    return "\n".join(f"- {value} ({count} occurrences)" for value, count in top_values)


class TabularFilterAgent:
    """
    Grounds free-text filter intent in the schema of a tabular index.

    One pass per query, no retries. Candidates are processed sequentially,
    most important first; a strong match (importance >= 4 and both
    confidences > 0.8) ends the pass early.
    """

    def __init__(
        self,
        memory,
        discovery: FieldDiscovery,
        executor: PromptExecutor,
        index: str,
        min_confidence: float = MIN_CONFIDENCE,
        strong_confidence: float = STRONG_CONFIDENCE,
        strong_importance: int = STRONG_IMPORTANCE,
        max_criteria: int = MAX_CRITERIA,
        top_values_limit: int = DEFAULT_TOP_VALUES_LIMIT,
    ):
        """
        Args:
            memory: Store with get_similar_list(index, text, filters, min_relevance, limit)
            discovery: Field discovery capability (discover_fields / get_top_values)
            executor: Prompt executor used for the three LLM calls
            index: Index (container) to ground against and search
            min_confidence: Field and value matches below this are dropped
            strong_confidence: Confidence above which a match counts as strong
            strong_importance: Importance from which a strong match stops the pass
            max_criteria: Maximum number of criteria taken from the LLM
            top_values_limit: Number of known values shown for value matching
        """
        self.memory = memory
        self.discovery = discovery
        self.executor = executor
        self.index = index
        self.min_confidence = min_confidence
        self.strong_confidence = strong_confidence
        self.strong_importance = strong_importance
        self.max_criteria = max_criteria
        self.top_values_limit = top_values_limit

    async def process_query(
        self,
        query: str,
        min_relevance: float = 0.0,
        limit: int = 5,
    ) -> Tuple[List[Tuple[MemoryRecord, float]], GroundedFilterResult]:
        """
        Ground the query and run the similarity search.

        Returns:
            ((record, relevance) pairs, grounding details)
        """
        logger.info(f"Processing query: {query}")
        grounding = await self.build_filter(query)

        filters = [MemoryFilter.from_dict(clause) for clause in grounding.filters] or None
        logger.info(f"Executing query with final filter: {json.dumps(grounding.filters, default=str)}")

        results = []
        async for record, relevance in self.memory.get_similar_list(
            self.index,
            query,
            filters=filters,
            min_relevance=min_relevance,
            limit=limit,
        ):
            results.append((record, relevance))
        return results, grounding

    async def build_filter(self, query: str) -> GroundedFilterResult:
        criteria = await self.identify_filter_criteria(query)
        result = GroundedFilterResult(query=query, criteria=criteria)

        if not criteria:
            logger.info("No specific filter criteria identified. Performing general search.")
            return result

        memory_filter = MemoryFilter()
        # stable sort: equal importance keeps the LLM's order
        for criterion in sorted(criteria, key=lambda c: c.importance, reverse=True):
            grounded = await self._ground_criterion(criterion)
            if grounded is None:
                continue

            memory_filter.add(grounded.filter_key, grounded.value)
            result.applied.append(grounded)
            logger.info(f"Added filter: {grounded.field_type.value}.{grounded.field_name} = {grounded.value}")

            if (
                grounded.importance >= self.strong_importance
                and grounded.field_confidence > self.strong_confidence
                and grounded.value_confidence > self.strong_confidence
            ):
                logger.info("Stopping filter generation after high-confidence primary criterion.")
                result.stopped_early = True
                break

        if not memory_filter.is_empty():
            result.filters = [memory_filter.to_dict()]
        return result

    async def _ground_criterion(self, criterion: FilterCriterion) -> Optional[GroundedCriterion]:
        catalog = await self.discovery.discover_fields(self.index)
        if catalog.is_empty():
            logger.warning(f"No known fields in index {self.index}. Skipping criterion '{criterion.field_name_hint}'.")
            return None

        field_match = await self.find_best_field_match(catalog, criterion.field_name_hint)
        logger.info(
            f"Field match for '{criterion.field_name_hint}': Found '{field_match.field_name}' "
            f"({field_match.field_type}) with confidence {field_match.confidence:.1%}"
        )
        if field_match.confidence < self.min_confidence or field_match.field_name == NO_MATCH:
            logger.warning("Field match confidence too low. Skipping criterion.")
            return None

        located = self._locate_field(catalog, field_match)
        if located is None:
            logger.warning(f"Field '{field_match.field_name}' is not a known field. Skipping criterion.")
            return None
        field_type, field_name = located

        top_values = await self.discovery.get_top_values(self.index, field_type, field_name, self.top_values_limit)
        value_match = await self.find_best_value_match(field_name, top_values, criterion.value_hint)
        logger.info(
            f"Value match for '{criterion.value_hint}' in field '{field_name}': Found '{value_match.value}' "
            f"with confidence {value_match.confidence:.1%}"
        )
        if value_match.confidence < self.min_confidence:
            logger.warning("Value match confidence too low. Skipping criterion.")
            return None

        return GroundedCriterion(
            field_type=field_type,
            field_name=field_name,
            value=value_match.value,
            importance=criterion.importance,
            field_confidence=field_match.confidence,
            value_confidence=value_match.confidence,
        )

    @staticmethod
    def _locate_field(catalog: FieldCatalog, field_match: FieldMatchResponse) -> Optional[Tuple[FieldType, str]]:
        """Catalog spelling and kind of the matched field; the LLM's kind is tried first."""
        preferred = FieldType.parse(field_match.field_type)
        other = FieldType.DATA if preferred == FieldType.TAG else FieldType.TAG
        for field_type in (preferred, other):
            name = catalog.find(field_type, field_match.field_name)
            if name is not None:
                return field_type, name
        return None

    async def identify_filter_criteria(self, query: str) -> List[FilterCriterion]:
        """Ask the LLM for candidate criteria; any failure yields no criteria."""
        try:
            response = await self.executor.invoke(
                CRITERIA_EXTRACTION_PROMPT,
                {"question": query, "max_criteria": self.max_criteria},
            )
            items = json.loads(extract_json_text(response))
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing filter criteria from LLM: {str(e)}")
            return []
        except Exception as e:
            logger.error(f"Error identifying filter criteria: {str(e)}")
            return []

        if isinstance(items, dict):
            items = [items]
        if not isinstance(items, list):
            logger.error(f"Filter criteria response is not a JSON array: {type(items).__name__}")
            return []

        criteria: List[FilterCriterion] = []
        for item in items:
            try:
                criteria.append(FilterCriterion.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Ignoring malformed filter criterion {item!r}: {str(e)}")
        return criteria[:self.max_criteria]

    async def find_best_field_match(self, catalog: FieldCatalog, field_name_hint: str) -> FieldMatchResponse:
        variables: Dict[str, Any] = {"fields": describe_fields(catalog), "field_name_hint": field_name_hint}
        try:
            response = await self.executor.invoke(FIELD_MATCH_PROMPT, variables)
            return FieldMatchResponse.model_validate_json(extract_json_text(response))
        except ValidationError as e:
            logger.error(f"Error parsing field match response: {str(e)}")
        except Exception as e:
            logger.error(f"Error matching field '{field_name_hint}': {str(e)}")
        return FieldMatchResponse()

    async def find_best_value_match(
        self,
        field_name: str,
        top_values: TopValues,
        value_hint: str,
    ) -> ValueMatchResponse:
        if not top_values:
            # nothing to match against: keep the hint at medium confidence
            return ValueMatchResponse(value=value_hint, confidence=UNVERIFIED_VALUE_CONFIDENCE)

        variables: Dict[str, Any] = {
            "field_name": field_name,
            "values": describe_values(top_values),
            "value_hint": value_hint,
        }
        try:
            response = await self.executor.invoke(VALUE_MATCH_PROMPT, variables)
            return ValueMatchResponse.model_validate_json(extract_json_text(response))
        except ValidationError as e:
            logger.error(f"Error parsing value match response: {str(e)}")
        except Exception as e:
            logger.error(f"Error matching value '{value_hint}' for field '{field_name}': {str(e)}")
        return ValueMatchResponse(value=value_hint, confidence=0.0)
