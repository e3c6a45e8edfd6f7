"""
Prompt templates used to ground natural-language filters.

Templates use PromptTemplate (f-string) syntax, so literal JSON braces are doubled.
"""

CRITERIA_EXTRACTION_PROMPT = """
Analyze the user's question about tabular data (like server inventories, logs, etc.)
Identify specific criteria mentioned that could be used for filtering.

User question: {question}

Extract up to {max_criteria} potential filtering criteria. For each, provide:
1. A hint for the field name (e.g., 'environment', 'status', 'location', 'server type')
2. The specific value mentioned (e.g., 'Production', 'Running', 'East US', 'Database')
3. The type of field you think it is ('tag' or 'data') - default to 'data' if unsure.
4. An importance score (1-5, 5=most important)

Return ONLY the JSON array, nothing else. Example:
[
  {{ "fieldType": "data", "fieldNameHint": "environment", "valueHint": "Production", "importance": 5 }},
  {{ "fieldType": "data", "fieldNameHint": "status", "valueHint": "Running", "importance": 3 }}
]

If no specific criteria are found, return an empty JSON array [].

JSON response:"""

FIELD_MATCH_PROMPT = """
You are matching a user's filter intent to the most relevant available database field.

Available fields:
{fields}

User's filter intent: {field_name_hint}

Analyze the intent and determine the best matching field.
Return ONLY JSON with properties: fieldType ('tag' or 'data'), fieldName (the internal name), confidence (0-1), reasoning.
If no good match, use fieldName 'none'.

JSON response:"""

VALUE_MATCH_PROMPT = """
You are matching a user's filter value intent to the most relevant value for a database field.

Field: {field_name}
Available values (with counts):
{values}

User's value intent: {value_hint}

Analyze the intent and determine the best matching value.
Return ONLY JSON with properties: value, confidence (0-1), reasoning.
If no good match, suggest an appropriate value based on the intent.

JSON response:"""
