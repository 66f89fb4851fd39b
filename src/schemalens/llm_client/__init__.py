"""
LLM Client Package

Bedrock Claude client and the reasoning service built on it.
"""
from .bedrock_client import (
    LLMResponse,
    BaseLLMClient,
    BedrockClaudeClient,
    LLMClientFactory,
    get_llm_client,
)
from .reasoning import (
    ColumnDescriptionRequest,
    ColumnDescription,
    TableField,
    TableAnalysisRequest,
    TableAnalysis,
    SchemaTable,
    RelationshipSuggestion,
    RelationshipAnalysis,
    ReasoningService,
    LLMReasoningService,
    categorize_data_type,
    fallback_column_description,
)

__all__ = [
    # Client
    "LLMResponse",
    "BaseLLMClient",
    "BedrockClaudeClient",
    "LLMClientFactory",
    "get_llm_client",
    # Reasoning
    "ColumnDescriptionRequest",
    "ColumnDescription",
    "TableField",
    "TableAnalysisRequest",
    "TableAnalysis",
    "SchemaTable",
    "RelationshipSuggestion",
    "RelationshipAnalysis",
    "ReasoningService",
    "LLMReasoningService",
    "categorize_data_type",
    "fallback_column_description",
]
