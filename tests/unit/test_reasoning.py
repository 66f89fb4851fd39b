"""
Unit Tests for the Reasoning Service and Bedrock Client
"""
import io
import json
import pytest
from unittest.mock import MagicMock, patch
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schemalens.config import LLMConfig
from schemalens.llm_client import (
    BedrockClaudeClient,
    ColumnDescriptionRequest,
    LLMReasoningService,
    LLMResponse,
    SchemaTable,
    TableAnalysisRequest,
    TableField,
    categorize_data_type,
    fallback_column_description,
)
from schemalens.llm_client.reasoning import (
    build_column_prompt,
    build_relationship_prompt,
    build_table_prompt,
    clean_truncated_json,
    parse_brief_column_response,
    parse_structured_relationship_response,
)
from schemalens.utils import LLMError, ReasoningServiceError


class MockLLMClient:
    """Mock LLM client for testing"""

    def __init__(self, responses=None, output_tokens=50, error=None):
        self.responses = responses or []
        self.output_tokens = output_tokens
        self.error = error
        self.calls = []

    def invoke(self, prompt, system_prompt=None, **kwargs):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, **kwargs})
        if self.error:
            raise self.error
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        return LLMResponse(
            content=self.responses[index] if self.responses else "",
            model_id="mock-model",
            input_tokens=100,
            output_tokens=self.output_tokens,
            latency_ms=100.0,
        )

    def invoke_with_retry(self, prompt, system_prompt=None, max_retries=None, **kwargs):
        return self.invoke(prompt, system_prompt, **kwargs)

    def health_check(self):
        return True


RELATIONSHIP_REPLY = """**ANALYSIS:**
orders.customer_id references customers.id.

**STRUCTURED_DATA:**
```json
[
  {"sourceTable": "orders", "sourceColumn": "customer_id", "targetTable": "customers",
   "targetColumn": "id", "relationshipType": "one_to_many", "confidence": 0.95,
   "description": "Each order belongs to a customer"},
  {"sourceTable": "orders", "sourceColumn": "total", "targetTable": "customers",
   "targetColumn": "id", "relationshipType": "one_to_one", "confidence": 0.4}
]
```"""


class TestPromptBuilders:
    """Tests for prompt construction"""

    def test_column_prompt_truncates_samples(self):
        request = ColumnDescriptionRequest(
            table_name="users",
            column_name="bio",
            data_type="text",
            sample_values=["", "a" * 30, "short", "never shown"],
            custom_prompt="  Healthcare records  ",
        )
        prompt = build_column_prompt(request)
        assert "Sample values: " + "a" * 17 + "..., short" in prompt
        assert "never shown" not in prompt
        assert "Additional Context: Healthcare records" in prompt

    def test_column_prompt_without_samples(self):
        prompt = build_column_prompt(ColumnDescriptionRequest("users", "id", "integer"))
        assert "No sample values available" in prompt
        assert "Additional Context" not in prompt

    def test_table_prompt(self):
        request = TableAnalysisRequest(
            table_name="orders",
            fields=[
                TableField("id", "integer", is_nullable=False, is_primary_key=True, sample_values=["1", "2"]),
                TableField("total", "numeric"),
            ],
            row_count=42,
            note="Note: degraded",
        )
        prompt = build_table_prompt(request)
        assert "Row Count: 42" in prompt
        assert "Note: degraded" in prompt
        assert "- id (integer) [PRIMARY KEY] [NOT NULL] - Sample values: 1, 2" in prompt
        assert "**Usage Recommendations**" in prompt

    def test_relationship_prompt_flags_large_schema(self):
        tables = [SchemaTable(f"t{i}", [TableField("id", "integer", is_primary_key=True)]) for i in range(11)]
        prompt = build_relationship_prompt(tables)
        assert "Large schema detected (11 tables)" in prompt
        assert "  - id (integer) [PK]" in prompt


class TestColumnResponseParsing:
    """Tests for tolerant column reply parsing"""

    def test_plain_json(self):
        reply = '{"purpose": "user identifier", "sample_value": "u1", "data_pattern": "alphanumeric"}'
        assert parse_brief_column_response(reply) == ("user identifier", "u1", "alphanumeric")

    def test_code_block_with_chatter(self):
        reply = 'Here you go:\n```json\n{"purpose": "email", "sample_value": "a@b.c", "data_pattern": "email"}\n```'
        assert parse_brief_column_response(reply) == ("email", "a@b.c", "email")

    def test_truncated_object_is_completed(self):
        reply = '{"purpose": "order total", "sample_value": "19.99", "data_pattern": "numeric", "notes": "cut of'
        assert parse_brief_column_response(reply) == ("order total", "19.99", "numeric")

    def test_truncated_required_field_is_unusable(self):
        reply = '{"purpose": "order total", "sample_value": "19.99", "data_pattern": "num'
        assert parse_brief_column_response(reply) is None

    def test_missing_field(self):
        assert parse_brief_column_response('{"purpose": "x", "sample_value": "y"}') is None

    def test_garbage(self):
        assert parse_brief_column_response("I cannot help with that") is None


class TestRelationshipResponseParsing:
    """Tests for structured relationship reply parsing"""

    def test_filters_low_confidence(self):
        analysis, suggestions = parse_structured_relationship_response(RELATIONSHIP_REPLY)
        assert analysis.startswith("orders.customer_id references customers.id")
        assert len(suggestions) == 1
        assert suggestions[0].source_column == "customer_id"
        assert suggestions[0].confidence == 0.95

    def test_unterminated_code_block(self):
        reply = (
            "**ANALYSIS:**\nlinks\n**STRUCTURED_DATA:**\n```json\n"
            '[{"sourceTable": "a", "sourceColumn": "b_id", "targetTable": "b", "targetColumn": "id", '
            '"relationshipType": "one_to_many", "confidence": 0.9}, {"sourceTable": "c", "sourceCol'
        )
        _, suggestions = parse_structured_relationship_response(reply)
        assert [(s.source_table, s.target_table) for s in suggestions] == [("a", "b")]

    def test_empty_array(self):
        analysis, suggestions = parse_structured_relationship_response(
            "**ANALYSIS:**\nnothing\n**STRUCTURED_DATA:**\n```json\n[]\n```"
        )
        assert analysis == "nothing"
        assert suggestions == []

    def test_clean_truncated_json(self):
        cleaned = clean_truncated_json('[{"a": 1}, {"b": 2}, {"c"')
        assert json.loads(cleaned) == [{"a": 1}, {"b": 2}]


class TestFallbacks:
    @pytest.mark.parametrize("data_type,expected", [
        ("integer", "numeric"),
        ("numeric(10,2)", "numeric"),
        ("timestamp without time zone", "datetime"),
        ("date", "date"),
        ("boolean", "boolean"),
        ("bit", "boolean"),
        ("uuid", "alphanumeric"),
        ("character varying", "text"),
    ])
    def test_categorize(self, data_type, expected):
        assert categorize_data_type(data_type) == expected

    def test_fallback_description(self):
        fallback = fallback_column_description("Created_At", "timestamp")
        assert fallback.description == "created at field"
        assert fallback.example_value == "2024-01-01 12:00:00"
        assert fallback.value_type == "datetime"
        assert not fallback.parsed


class TestLLMReasoningService:
    """Tests for the reasoning service over a mocked LLM client"""

    def test_generate_brief_column_description(self):
        client = MockLLMClient(['{"purpose": "order total", "sample_value": "19.99", "data_pattern": "numeric"}'])
        described = LLMReasoningService(client).generate_brief_column_description(
            ColumnDescriptionRequest("orders", "total", "numeric", sample_values=["19.99"])
        )
        assert described.description == "order total"
        assert described.parsed
        assert described.usage == {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}
        assert client.calls[0]["max_tokens"] == 150
        assert client.calls[0]["temperature"] == 0.1

    def test_unparseable_reply_falls_back(self):
        client = MockLLMClient(["no idea"])
        described = LLMReasoningService(client).generate_brief_column_description(
            ColumnDescriptionRequest("orders", "email", "varchar")
        )
        assert not described.parsed
        assert described.example_value == "sample_text"
        assert described.usage["total_tokens"] == 150

    def test_llm_error_becomes_reasoning_error(self):
        client = MockLLMClient(error=LLMError("throttled", model_id="mock-model"))
        with pytest.raises(ReasoningServiceError) as exc_info:
            LLMReasoningService(client).analyze_table(TableAnalysisRequest("orders"))
        assert exc_info.value.operation == "analyze_table"

    def test_generate_structured_relationships_flags_truncation(self):
        client = MockLLMClient([RELATIONSHIP_REPLY], output_tokens=9800)
        analysis = LLMReasoningService(client).generate_structured_relationships([SchemaTable("orders"), SchemaTable("customers")])
        assert analysis.truncated
        assert len(analysis.relationships) == 1
        assert client.calls[0]["max_tokens"] == 10000


class TestBedrockClaudeClient:
    """Tests for the Bedrock client with a mocked boto3 runtime"""

    @staticmethod
    def reply(text, input_tokens=12, output_tokens=3):
        body = {
            "content": [{"type": "text", "text": text}],
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
            "stop_reason": "end_turn",
        }
        return {"body": io.BytesIO(json.dumps(body).encode())}

    @pytest.fixture
    def client(self):
        client = BedrockClaudeClient(LLMConfig(retry_delay=0.1))
        client._client = MagicMock()
        return client

    def test_invoke(self, client):
        client._client.invoke_model.return_value = self.reply("hello")
        response = client.invoke("hi", system_prompt="be brief", max_tokens=150)
        assert response.content == "hello"
        assert response.usage["total_tokens"] == 15
        body = json.loads(client._client.invoke_model.call_args.kwargs["body"])
        assert body["max_tokens"] == 150
        assert body["system"] == "be brief"

    def test_retries_throttling(self, client):
        client._client.invoke_model.side_effect = [
            Exception("ThrottlingException: Rate exceeded"),
            self.reply("ok"),
        ]
        with patch("schemalens.llm_client.bedrock_client.time.sleep") as sleep:
            response = client.invoke_with_retry("hi")
        assert response.content == "ok"
        sleep.assert_called_once()

    def test_non_retryable_error_raises_immediately(self, client):
        client._client.invoke_model.side_effect = Exception("ValidationException: bad model")
        with pytest.raises(LLMError):
            client.invoke_with_retry("hi")
        assert client._client.invoke_model.call_count == 1
