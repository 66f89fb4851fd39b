"""
Reasoning Service
Prompt construction and response parsing for column descriptions, table
summaries and relationship suggestions, on top of an LLM client
"""
from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..utils import LLMError, ReasoningServiceError, get_logger
from .bedrock_client import BaseLLMClient, LLMResponse

logger = get_logger(__name__)

COLUMN_MAX_TOKENS = 150
COLUMN_TEMPERATURE = 0.1
TABLE_MAX_TOKENS = 2000
TABLE_TEMPERATURE = 0.3
RELATIONSHIP_MAX_TOKENS = 10000
RELATIONSHIP_TEMPERATURE = 0.1
MIN_RELATIONSHIP_CONFIDENCE = 0.7
LARGE_SCHEMA_TABLES = 10

DATA_PATTERNS = (
    "alphanumeric", "email", "categorical", "encrypted", "numeric",
    "date", "datetime", "boolean", "url", "phone", "text",
)

COLUMN_SYSTEM_PROMPT = (
    "You are a database expert. You must respond with ONLY valid JSON - no explanatory text, "
    "no markdown, no additional commentary. Analyze the given column and return a JSON object "
    "with the exact structure requested."
)
TABLE_SYSTEM_PROMPT = (
    "You are a database expert analyst. Provide concise, accurate analysis of database tables "
    "and their fields. Focus on data patterns, business purpose, and potential relationships."
)
RELATIONSHIP_SYSTEM_PROMPT = (
    "You are a database expert. Analyze tables and return both a text analysis AND structured "
    "JSON data for relationships. Be precise and only suggest relationships with high confidence."
)


@dataclass
class ColumnDescriptionRequest:
    table_name: str
    column_name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    sample_values: List[str] = field(default_factory=list)
    custom_prompt: Optional[str] = None


@dataclass
class ColumnDescription:
    """Structured column description; `parsed` is False when the reply was unusable"""
    description: str
    example_value: str
    value_type: str
    usage: Dict[str, int] = field(default_factory=dict)
    parsed: bool = True


@dataclass
class TableField:
    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    sample_values: List[str] = field(default_factory=list)


@dataclass
class TableAnalysisRequest:
    table_name: str
    fields: List[TableField] = field(default_factory=list)
    row_count: Optional[int] = None
    note: Optional[str] = None


@dataclass
class TableAnalysis:
    content: str
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass
class SchemaTable:
    """Compact table description for relationship inference"""
    name: str
    fields: List[TableField] = field(default_factory=list)


@dataclass
class RelationshipSuggestion:
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    relationship_type: str
    confidence: float
    description: str = ""
    example: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_table": self.source_table,
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "relationship_type": self.relationship_type,
            "confidence": self.confidence,
            "description": self.description,
            "example": self.example,
        }


@dataclass
class RelationshipAnalysis:
    relationships: List[RelationshipSuggestion] = field(default_factory=list)
    analysis: str = ""
    usage: Dict[str, int] = field(default_factory=dict)
    truncated: bool = False


class ReasoningService(ABC):
    """Natural-language reasoning collaborator used by the pipeline"""

    @abstractmethod
    def generate_brief_column_description(self, request: ColumnDescriptionRequest) -> ColumnDescription:
        pass

    @abstractmethod
    def analyze_table(self, request: TableAnalysisRequest) -> TableAnalysis:
        pass

    @abstractmethod
    def generate_structured_relationships(self, tables: List[SchemaTable]) -> RelationshipAnalysis:
        pass


# Prompt builders

def _prompt_samples(values: List[str]) -> List[str]:
    cleaned = []
    for value in values:
        if not value:
            continue
        cleaned.append(value[:17] + "..." if len(value) > 20 else value)
        if len(cleaned) == 2:
            break
    return cleaned


def build_column_prompt(request: ColumnDescriptionRequest) -> str:
    samples = _prompt_samples(request.sample_values)
    sample_text = f"Sample values: {', '.join(samples)}" if samples else "No sample values available"

    prompt = (
        "Analyze this database column and provide structured information:\n\n"
        f"Column Name: {request.column_name}\n"
        f"Data Type: {request.data_type}\n"
        f"{sample_text}"
    )
    if request.custom_prompt and request.custom_prompt.strip():
        prompt += f"\n\nAdditional Context: {request.custom_prompt.strip()}"

    prompt += f"""

You must respond with ONLY valid JSON in this exact format:
{{
  "purpose": "brief description of what this column represents (no data types mentioned)",
  "sample_value": "a short, realistic example value",
  "data_pattern": "type of data pattern"
}}

Valid data_pattern values: {', '.join(DATA_PATTERNS)}

Examples:
{{"purpose":"user identifier","sample_value":"user123","data_pattern":"alphanumeric"}}
{{"purpose":"email address","sample_value":"user@domain.com","data_pattern":"email"}}
{{"purpose":"user role or permission level","sample_value":"admin","data_pattern":"categorical"}}
{{"purpose":"encrypted password hash","sample_value":"$2b$10...","data_pattern":"encrypted"}}
{{"purpose":"creation timestamp","sample_value":"2024-01-15 10:30:00","data_pattern":"datetime"}}
{{"purpose":"product price","sample_value":"29.99","data_pattern":"numeric"}}

CRITICAL REQUIREMENTS:
- Start response immediately with {{
- End response with }}
- No explanatory text before or after
- No markdown code blocks
- Only the three required fields: purpose, sample_value, data_pattern"""
    return prompt


def build_table_prompt(request: TableAnalysisRequest) -> str:
    lines = ["Analyze the following database table:", "", f"Table: {request.table_name}"]
    if request.row_count:
        lines.append(f"Row Count: {request.row_count}")
    if request.note:
        lines.extend(["", request.note])

    lines.extend(["", "Fields:"])
    for f in request.fields:
        line = f"- {f.name} ({f.data_type})"
        if f.is_primary_key:
            line += " [PRIMARY KEY]"
        if not f.is_nullable:
            line += " [NOT NULL]"
        if f.sample_values:
            line += f" - Sample values: {', '.join(f.sample_values[:5])}"
        lines.append(line)

    lines.append("""
Provide a comprehensive analysis including:
1. **Business Purpose**: What this table likely represents in the business domain
2. **Data Patterns**: Observations about the data types and field relationships
3. **Data Quality**: Potential data quality concerns or recommendations
4. **Usage Recommendations**: How this table might be used in queries or reports
5. **Potential Relationships**: Fields that might relate to other tables

Keep the analysis concise but informative.""")
    return "\n".join(lines)


def build_relationship_prompt(tables: List[SchemaTable]) -> str:
    lines = [
        "Analyze the following database tables to identify relationships. "
        "Return both analysis and structured JSON data.",
        "",
    ]
    if len(tables) > LARGE_SCHEMA_TABLES:
        lines.extend([
            f"NOTE: Large schema detected ({len(tables)} tables). Focus on the most obvious and "
            "high-confidence relationships to stay within token limits.",
            "",
        ])

    for table in tables:
        lines.append(f"Table: {table.name}")
        for f in table.fields:
            lines.append(f"  - {f.name} ({f.data_type})" + (" [PK]" if f.is_primary_key else ""))
        lines.append("")

    lines.append("""Please provide:

1. **ANALYSIS**: A detailed text analysis of the relationships you identified

2. **STRUCTURED_DATA**: A JSON array of relationships in this exact format:
```json
[
  {
    "sourceTable": "table_name",
    "sourceColumn": "column_name",
    "targetTable": "table_name",
    "targetColumn": "column_name",
    "relationshipType": "one_to_many",
    "confidence": 0.9,
    "description": "Brief description of this relationship",
    "example": "Sample query: SELECT * FROM source s JOIN target t ON s.column = t.column"
  }
]
```

IMPORTANT:
- Only include relationships with confidence >= 0.7
- Use relationship types: "one_to_one", "one_to_many", "many_to_many"
- Always close the JSON array with ] and the code block with ```
- If no relationships found, return an empty array []
- Be concise in descriptions and examples

Format your response as:
**ANALYSIS:**
[Your detailed text analysis here - keep concise]

**STRUCTURED_DATA:**
[Complete JSON array here - prioritize high-confidence relationships]""")
    return "\n".join(lines)


# Response parsing

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_FLAT_OBJECT = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")
_BARE_ARRAY = re.compile(r"\[([\s\S]*)\]")


def complete_truncated_object(text: str) -> str:
    """Close a JSON object cut off mid-field by dropping the partial field"""
    last_quote = text.rfind('"')
    if last_quote > 0:
        last_colon = text.rfind(":", 0, last_quote)
        if last_colon > 0:
            last_comma = text.rfind(",", 0, last_colon)
            if last_comma > 0:
                return text[:last_comma] + "}"
    return text + "}"


def parse_brief_column_response(content: str) -> Optional[Tuple[str, str, str]]:
    """(purpose, sample_value, data_pattern) from a model reply, or None"""
    text = (content or "").strip()

    if text.startswith("{") and text.endswith("}"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict) and data.get("purpose") and data.get("sample_value") and data.get("data_pattern"):
            return str(data["purpose"]), str(data["sample_value"]), str(data["data_pattern"])

    block = _CODE_BLOCK.search(text)
    if block:
        candidate = block.group(1).strip()
    else:
        match = _FLAT_OBJECT.search(text)
        if match:
            candidate = match.group(0)
        else:
            start, end = text.find("{"), text.rfind("}")
            if start == -1:
                return None
            # an unterminated reply is still worth a completion attempt
            candidate = text[start:end + 1] if end > start else text[start:]

    if '"purpose"' in candidate and not candidate.endswith("}"):
        candidate = complete_truncated_object(candidate)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug(f"Unparseable column description: {text[:200]}")
        return None
    if not isinstance(data, dict):
        return None
    if not (data.get("purpose") and data.get("sample_value") and data.get("data_pattern")):
        return None
    return str(data["purpose"]), str(data["sample_value"]), str(data["data_pattern"])


def extract_section(content: str, start_marker: str, end_marker: Optional[str]) -> str:
    """Text between two markers; the whole content when the start marker is absent"""
    start_index = content.find(start_marker)
    if start_index == -1:
        return content
    start = start_index + len(start_marker)
    end = content.find(end_marker, start) if end_marker else -1
    return content[start:end if end != -1 else len(content)].strip()


def _balanced(text: str) -> bool:
    return text.count("{") == text.count("}") and text.count("[") == text.count("]")


def clean_truncated_json(text: str) -> Optional[str]:
    """Trim a cut-off JSON array back to its last complete object"""
    cleaned = text.strip()
    for pattern in (r',\s*"[^"]*$', r",\s*$", r'"[^"]*$'):
        cleaned = re.sub(pattern, "", cleaned)

    last_object = cleaned.rfind("}")
    last_array = cleaned.rfind("]")
    if last_object > last_array and last_object > 0:
        cleaned = cleaned[:last_object + 1]
        if cleaned.startswith("[") and not cleaned.endswith("]"):
            cleaned += "]"

    candidate = cleaned if cleaned.startswith("[") else f"[{cleaned}]"
    try:
        json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return candidate


def _to_confidence(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_structured_relationship_response(content: str) -> Tuple[str, List[RelationshipSuggestion]]:
    """(analysis text, suggestions) from a relationship reply"""
    analysis = extract_section(content, "ANALYSIS:", "STRUCTURED_DATA:")
    structured = extract_section(content, "STRUCTURED_DATA:", None)

    raw: List[Any] = []
    block = _CODE_BLOCK.search(structured)
    if block:
        json_text = block.group(1)
    else:
        # unterminated fences are common when the reply hits max_tokens
        fence = structured.find("```")
        tail = structured[fence:].split("\n", 1)[-1] if fence != -1 else structured
        array = _BARE_ARRAY.search(tail)
        if array:
            json_text = f"[{array.group(1)}]"
        elif "[" in tail:
            json_text = tail[tail.find("["):]
        else:
            json_text = ""

    if json_text.strip():
        try:
            if '"' in json_text and not _balanced(json_text):
                logger.warning("Relationship JSON appears truncated, attempting cleanup")
                cleaned = clean_truncated_json(json_text)
                raw = json.loads(cleaned) if cleaned else []
            else:
                text = json_text.strip()
                raw = json.loads(text if text.startswith("[") else f"[{text}]")
        except json.JSONDecodeError as e:
            logger.warning(
                f"Failed to parse structured relationship data: {e.msg}",
                extra={"extra_fields": {"raw": structured[:500]}}
            )
            raw = []

    suggestions = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        endpoints = [item.get(k) for k in ("sourceTable", "sourceColumn", "targetTable", "targetColumn")]
        confidence = _to_confidence(item.get("confidence"))
        if not all(endpoints) or confidence is None or confidence < MIN_RELATIONSHIP_CONFIDENCE:
            continue
        suggestions.append(RelationshipSuggestion(
            source_table=str(endpoints[0]),
            source_column=str(endpoints[1]),
            target_table=str(endpoints[2]),
            target_column=str(endpoints[3]),
            relationship_type=str(item.get("relationshipType") or ""),
            confidence=confidence,
            description=str(item.get("description") or ""),
            example=item.get("example"),
        ))

    analysis = analysis.strip().strip("*").strip()
    return analysis or content, suggestions


# Deterministic fallbacks

_FALLBACK_EXAMPLES = {
    "text": "sample_text",
    "varchar": "sample_text",
    "string": "sample_text",
    "integer": "12345",
    "int": "12345",
    "number": "12345",
    "decimal": "123.45",
    "float": "123.45",
    "boolean": "true",
    "date": "2024-01-01",
    "datetime": "2024-01-01 12:00:00",
    "timestamp": "2024-01-01 12:00:00",
    "email": "user@example.com",
    "phone": "123-456-7890",
    "uuid": "uuid-123-456",
}


def fallback_example_value(data_type: str) -> str:
    """Generic example for a type; real sample values are never echoed"""
    lowered = (data_type or "").lower()
    if "email" in lowered:
        return "user@example.com"
    if "phone" in lowered:
        return "123-456-7890"
    if "url" in lowered:
        return "https://example.com"
    if lowered in _FALLBACK_EXAMPLES:
        return _FALLBACK_EXAMPLES[lowered]
    category = categorize_data_type(lowered)
    return {
        "numeric": "12345",
        "date": "2024-01-01",
        "datetime": "2024-01-01 12:00:00",
        "boolean": "true",
    }.get(category, "sample_value")


def categorize_data_type(data_type: str) -> str:
    """Map an engine data type onto the data-pattern vocabulary"""
    t = (data_type or "").lower()
    if "bool" in t or t == "bit":
        return "boolean"
    if "timestamp" in t or "datetime" in t:
        return "datetime"
    if "date" in t:
        return "date"
    if "time" in t or "interval" in t:
        return "datetime"
    if any(k in t for k in ("int", "number", "numeric", "decimal", "float", "double", "real", "money", "serial")):
        return "numeric"
    if "uuid" in t or "uniqueidentifier" in t:
        return "alphanumeric"
    return "text"


def fallback_column_description(column_name: str, data_type: str) -> ColumnDescription:
    return ColumnDescription(
        description=f"{column_name.replace('_', ' ').lower()} field",
        example_value=fallback_example_value(data_type),
        value_type=categorize_data_type(data_type),
        parsed=False,
    )


class LLMReasoningService(ReasoningService):
    """ReasoningService backed by a BaseLLMClient (Bedrock Claude)"""

    def __init__(self, llm_client: BaseLLMClient):
        self.llm_client = llm_client

    def _complete(self, operation: str, prompt: str, system_prompt: str, **kwargs) -> LLMResponse:
        try:
            return self.llm_client.invoke_with_retry(prompt, system_prompt=system_prompt, **kwargs)
        except LLMError as e:
            raise ReasoningServiceError(
                f"Reasoning service failed during {operation}: {e.message}",
                operation=operation,
                original_error=e,
            )

    def generate_brief_column_description(self, request: ColumnDescriptionRequest) -> ColumnDescription:
        response = self._complete(
            "generate_brief_column_description",
            build_column_prompt(request),
            COLUMN_SYSTEM_PROMPT,
            max_tokens=COLUMN_MAX_TOKENS,
            temperature=COLUMN_TEMPERATURE,
        )
        parsed = parse_brief_column_response(response.content)
        if parsed is None:
            logger.warning(
                f"Falling back to generated description for column {request.column_name}",
                extra={"extra_fields": {"table": request.table_name}}
            )
            description = fallback_column_description(request.column_name, request.data_type)
            description.usage = response.usage
            return description

        purpose, sample_value, data_pattern = parsed
        return ColumnDescription(
            description=purpose,
            example_value=sample_value,
            value_type=data_pattern,
            usage=response.usage,
        )

    def analyze_table(self, request: TableAnalysisRequest) -> TableAnalysis:
        response = self._complete(
            "analyze_table",
            build_table_prompt(request),
            TABLE_SYSTEM_PROMPT,
            max_tokens=TABLE_MAX_TOKENS,
            temperature=TABLE_TEMPERATURE,
        )
        return TableAnalysis(
            content=response.content or "No analysis generated",
            usage=response.usage,
        )

    def generate_structured_relationships(self, tables: List[SchemaTable]) -> RelationshipAnalysis:
        prompt = build_relationship_prompt(tables)
        logger.info(
            f"Relationship analysis for {len(tables)} tables",
            extra={"extra_fields": {
                "estimated_input_tokens": len(prompt) // 4,
                "max_tokens": RELATIONSHIP_MAX_TOKENS,
            }}
        )
        response = self._complete(
            "generate_structured_relationships",
            prompt,
            RELATIONSHIP_SYSTEM_PROMPT,
            max_tokens=RELATIONSHIP_MAX_TOKENS,
            temperature=RELATIONSHIP_TEMPERATURE,
        )

        truncated = response.output_tokens >= int(RELATIONSHIP_MAX_TOKENS * 0.95)
        if truncated:
            logger.warning(
                "Relationship analysis may be truncated; some relationships may be missing",
                extra={"extra_fields": {
                    "completion_tokens": response.output_tokens,
                    "max_tokens": RELATIONSHIP_MAX_TOKENS,
                }}
            )

        analysis, relationships = parse_structured_relationship_response(response.content)
        return RelationshipAnalysis(
            relationships=relationships,
            analysis=analysis,
            usage=response.usage,
            truncated=truncated,
        )
