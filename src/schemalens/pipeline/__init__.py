"""
Schema Intelligence Pipeline

Introspection, sampling, table analysis and relationship inference.
"""
from .introspector import SchemaIntrospector
from .sampler import SampleSet, Sampler, clamp_limit
from .orchestrator import (
    NO_SAMPLE_NOTE,
    AnalysisOrchestrator,
    ColumnOutcome,
    combine_usage,
    extract_recommendations,
)
from .relationships import RelationshipInferenceResult, RelationshipInferrer
from .catalog import CatalogService

__all__ = [
    "SchemaIntrospector",
    "SampleSet",
    "Sampler",
    "clamp_limit",
    "NO_SAMPLE_NOTE",
    "AnalysisOrchestrator",
    "ColumnOutcome",
    "combine_usage",
    "extract_recommendations",
    "RelationshipInferenceResult",
    "RelationshipInferrer",
    "CatalogService",
]
