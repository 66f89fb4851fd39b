"""
Relationship Inferrer
Proposes foreign-key-like links across the tables of one environment with a
single reasoning call, validates them against the stored schema and stores
the ones not seen before.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..llm_client import ReasoningService, RelationshipSuggestion, SchemaTable, TableField
from ..models import Column, Relationship, RelationshipKind, Table
from ..store import MetadataStore
from ..utils import (
    InsufficientTablesError,
    PipelineMetrics,
    get_logger,
    log_context,
    log_operation,
)

logger = get_logger(__name__)

DEFAULT_ANALYSIS = "Relationship analysis completed"


def _table_lookup(tables: List[Table]) -> Dict[str, Table]:
    """Tables by qualified name; a bare name also resolves when no other schema shares it"""
    lookup = {t.qualified_name: t for t in tables}
    bare = Counter(t.name for t in tables)
    for t in tables:
        if bare[t.name] == 1:
            lookup.setdefault(t.name, t)
    return lookup


@dataclass
class RelationshipInferenceResult:
    """Newly stored relationships plus the reasoning output they came from"""
    created: List[Relationship] = field(default_factory=list)
    suggestions: List[RelationshipSuggestion] = field(default_factory=list)
    analysis: str = DEFAULT_ANALYSIS
    usage: Dict[str, int] = field(default_factory=dict)
    truncated: bool = False
    skipped: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_count": self.created_count,
            "created_relationships": [r.to_dict() for r in self.created],
            "relationships": [s.to_dict() for s in self.suggestions],
            "analysis": self.analysis,
            "usage": dict(self.usage),
            "truncated": self.truncated,
            "skipped": self.skipped,
        }


class RelationshipInferrer:
    """Relationship inference for one environment at a time"""

    def __init__(self, store: MetadataStore, reasoning: ReasoningService):
        self.store = store
        self.reasoning = reasoning

    def infer(self, environment_id: str) -> RelationshipInferenceResult:
        """
        Raises:
            RecordNotFoundError: Unknown environment
            InsufficientTablesError: Fewer than two imported tables
            ReasoningServiceError: The reasoning call failed
        """
        environment = self.store.get_environment(environment_id)
        tables = self.store.list_tables(environment.id)
        if len(tables) < 2:
            raise InsufficientTablesError(
                "Need at least 2 tables to analyze relationships",
                table_count=len(tables),
            )

        with log_context(environment_id=environment.id):
            with log_operation(logger, "relationship_inference", tables=len(tables)) as op:
                columns = {t.id: self.store.list_columns(t.id) for t in tables}
                analysis = self.reasoning.generate_structured_relationships(self._schema(tables, columns))

                result = RelationshipInferenceResult(
                    suggestions=analysis.relationships,
                    analysis=analysis.analysis or DEFAULT_ANALYSIS,
                    usage=analysis.usage,
                    truncated=analysis.truncated,
                )
                for suggestion in analysis.relationships:
                    relationship = self._resolve(environment.id, suggestion, tables, columns)
                    if relationship is None:
                        result.skipped += 1
                        continue
                    created = self.store.create_relationship_if_absent(relationship)
                    if created is None:
                        result.skipped += 1
                    else:
                        result.created.append(created)

                op["created"] = result.created_count
                op["skipped"] = result.skipped

        PipelineMetrics.record_relationships(result.created_count, result.skipped)
        return result

    @staticmethod
    def _schema(tables: List[Table], columns: Dict[str, List[Column]]) -> List[SchemaTable]:
        return [
            SchemaTable(
                name=t.qualified_name,
                fields=[
                    TableField(
                        name=c.name,
                        data_type=c.data_type,
                        is_nullable=c.is_nullable,
                        is_primary_key=c.is_primary_key,
                    )
                    for c in columns[t.id]
                ],
            )
            for t in tables
        ]

    @staticmethod
    def _resolve(
        environment_id: str,
        suggestion: RelationshipSuggestion,
        tables: List[Table],
        columns: Dict[str, List[Column]],
    ) -> Optional[Relationship]:
        """Relationship for a suggestion whose tables and columns all exist, else None"""
        by_name = _table_lookup(tables)
        source = by_name.get(suggestion.source_table)
        target = by_name.get(suggestion.target_table)
        if source is None or target is None:
            logger.debug(
                f"Dropping suggestion with unknown table: {suggestion.source_table} -> {suggestion.target_table}"
            )
            return None

        source_columns = {c.name for c in columns[source.id]}
        target_columns = {c.name for c in columns[target.id]}
        if suggestion.source_column not in source_columns or suggestion.target_column not in target_columns:
            logger.debug(
                f"Dropping suggestion with unknown column: "
                f"{suggestion.source_table}.{suggestion.source_column} -> "
                f"{suggestion.target_table}.{suggestion.target_column}"
            )
            return None

        return Relationship(
            environment_id=environment_id,
            source_table_id=source.id,
            source_column=suggestion.source_column,
            target_table_id=target.id,
            target_column=suggestion.target_column,
            kind=RelationshipKind.from_label(suggestion.relationship_type),
            confidence=suggestion.confidence,
            description=suggestion.description or None,
            example=suggestion.example,
            is_verified=False,
        )
